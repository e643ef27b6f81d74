import pickle
import unittest

from renpak.errors import CorruptIndexError, StructuralMismatchError
from renpak.unpickle import RawEntry, SchemaError, decode_entry, decode_index, loads

INDEX = {
    'a.txt': [(10, 3, '')],
    'dir/b.png': [(13, 4000, '')],
    'huge.ogg': [(1 << 40, (1 << 32) - 1, '')],
}


class LoadsTest(unittest.TestCase):
    def test_all_protocols(self):
        for protocol in range(pickle.HIGHEST_PROTOCOL + 1):
            with self.subTest(protocol=protocol):
                self.assertEqual(loads(pickle.dumps(INDEX, protocol=protocol)), INDEX)

    def test_shared_references(self):
        shared = [(1, 2, '')]
        data = pickle.dumps({'x': shared, 'y': shared}, protocol=2)
        result = loads(data)
        self.assertEqual(result['x'], shared)
        self.assertIs(result['x'], result['y'])

    def test_python2_strings(self):
        data = (
            b'\x80\x02}U\x05a.txt]'
            b'(K\x0aK\x03U\x00tas'
            b'U\x06\xc3\xa9.txt]'
            b'(K\x0dK\x01U\x00tas.'
        )
        self.assertEqual(
            loads(data),
            {'a.txt': [(10, 3, '')], 'é.txt': [(13, 1, '')]},
        )

    def test_latin1_fallback(self):
        data = b'\x80\x02U\x01\xe9.'
        self.assertEqual(loads(data), 'é')

    def test_rejects_globals(self):
        data = b'\x80\x02cbuiltins\nprint\n)R.'
        with self.assertRaises(StructuralMismatchError) as ctx:
            loads(data)
        self.assertIn('GLOBAL', str(ctx.exception))
        self.assertIsNone(ctx.exception.key)

    def test_rejects_sets(self):
        with self.assertRaises(StructuralMismatchError):
            loads(pickle.dumps({'a': {1, 2}}, protocol=4))

    def test_truncated(self):
        data = pickle.dumps(INDEX, protocol=2)
        with self.assertRaises(CorruptIndexError):
            loads(data[:-5])

    def test_garbage(self):
        with self.assertRaises(CorruptIndexError):
            loads(b'\xff\xfe\xfd')

    def test_missing_mark(self):
        with self.assertRaises(CorruptIndexError):
            loads(b'\x80\x02K\x01t.')

    def test_leftover_stack(self):
        with self.assertRaises(CorruptIndexError):
            loads(b'\x80\x02K\x01K\x02.')


class DecodeEntryTest(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(decode_entry('a', [(1, 2, '')]), RawEntry(1, 2))

    def test_list_triple_and_bytes_prefix(self):
        self.assertEqual(decode_entry('a', ([1, 2, b''],)), RawEntry(1, 2))

    def test_errors_are_tagged(self):
        cases = [
            'not a sequence',
            [],
            [(1, 2, ''), (3, 4, '')],
            [5],
            [(1, 2)],
            [(1, 2, '', 4)],
            [(1, 2, 'prefix')],
            [(1, 2, b'\x00')],
            [('1', 2, '')],
            [(1, 2.0, '')],
            [(True, 2, '')],
            [(-1, 2, '')],
            [(1, 1 << 32, '')],
            [(1 << 64, 1, '')],
        ]
        for value in cases:
            with self.subTest(value=value):
                result = decode_entry('member', value)
                self.assertIsInstance(result, SchemaError)
                self.assertEqual(result.key, 'member')


class DecodeIndexTest(unittest.TestCase):
    def test_valid(self):
        table = decode_index(pickle.dumps(INDEX, protocol=2))
        self.assertEqual(table['a.txt'], RawEntry(10, 3))
        self.assertEqual(table['huge.ogg'], RawEntry(1 << 40, (1 << 32) - 1))
        self.assertEqual(set(table), set(INDEX))

    def test_empty(self):
        self.assertEqual(decode_index(pickle.dumps({}, protocol=2)), {})

    def test_not_a_dict(self):
        with self.assertRaises(StructuralMismatchError) as ctx:
            decode_index(pickle.dumps([('a', 1, 2)], protocol=2))
        self.assertIsNone(ctx.exception.key)

    def test_outer_arity(self):
        index = dict(INDEX, broken=[(1, 2, ''), (3, 4, '')])
        with self.assertRaises(StructuralMismatchError) as ctx:
            decode_index(pickle.dumps(index, protocol=2))
        self.assertEqual(ctx.exception.key, 'broken')
        self.assertIn('broken', str(ctx.exception))

    def test_prefix(self):
        index = dict(INDEX, prefixed=[(1, 2, 'abc')])
        with self.assertRaises(StructuralMismatchError) as ctx:
            decode_index(pickle.dumps(index, protocol=2))
        self.assertEqual(ctx.exception.key, 'prefixed')

    def test_non_string_name(self):
        with self.assertRaises(StructuralMismatchError) as ctx:
            decode_index(pickle.dumps({7: [(1, 2, '')]}, protocol=2))
        self.assertEqual(ctx.exception.key, '7')

    def test_duplicate_names_last_wins(self):
        data = (
            b'\x80\x02}'
            b'X\x01\x00\x00\x00a](K\x01K\x02X\x00\x00\x00\x00tas'
            b'X\x01\x00\x00\x00a](K\x05K\x06X\x00\x00\x00\x00tas.'
        )
        self.assertEqual(decode_index(data), {'a': RawEntry(5, 6)})


if __name__ == '__main__':
    unittest.main()
