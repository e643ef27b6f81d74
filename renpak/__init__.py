"""
Readers for Ren'Py game archives (``.rpa``).

    from renpak.formats import rpa

    with rpa.open('game/archive.rpa') as arc:
        for name in arc.names():
            data = arc.get(name)
"""

__version__ = '0.1.0'
