from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from prompt_toolkit.application import Application
from prompt_toolkit.data_structures import Point
from prompt_toolkit.filters import IsDone
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout.containers import ConditionalContainer, HSplit, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.layout.layout import Layout

MAX_VISIBLE_OPTIONS = 20


@dataclass
class Option:
    key: str
    label: Optional[str] = None
    selected: bool = False


class SelectControl(FormattedTextControl):
    def __init__(self, options: Sequence[Option]):
        self.options = list(options)
        self.selected_index = 0
        self.selected_keys: Set[str] = {
            option.key for option in self.options if option.selected
        }
        super().__init__(
            self.select_option_text,
            key_bindings=self._create_key_bindings(),
            get_cursor_position=lambda: Point(x=0, y=self.selected_index),
            show_cursor=False,
        )

    @property
    def selected_option(self) -> Option:
        return self.options[self.selected_index]

    def move(self, step: int) -> None:
        if self.options:
            self.selected_index = (self.selected_index + step) % len(self.options)

    def toggle(self) -> None:
        if not self.options:
            return
        key = self.selected_option.key
        if key in self.selected_keys:
            self.selected_keys.remove(key)
        else:
            self.selected_keys.add(key)

    def toggle_all(self) -> None:
        if len(self.selected_keys) == len(self.options):
            self.selected_keys.clear()
        else:
            self.selected_keys = {option.key for option in self.options}

    def result(self) -> List[str]:
        return [option.key for option in self.options if option.key in self.selected_keys]

    def _create_key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add('down', eager=True)
        def move_cursor_down(event):
            self.move(1)

        @kb.add('up', eager=True)
        def move_cursor_up(event):
            self.move(-1)

        @kb.add('space', eager=True)
        def toggle_select(event):
            self.toggle()

        @kb.add('a', eager=True)
        def toggle_select_all(event):
            self.toggle_all()

        @kb.add('enter', eager=True)
        def set_selected(event):
            event.app.exit(result=self.result())

        @kb.add('c-q', eager=True)
        @kb.add('c-c', eager=True)
        def _(event):
            raise KeyboardInterrupt()

        return kb

    def select_option_text(self, mark: str = '>') -> List[tuple]:
        text = []
        for idx, op in enumerate(self.options):
            display_text = op.label or op.key
            check = '+' if op.key in self.selected_keys else ' '
            prefix = mark if idx == self.selected_index else ' ' * len(mark)
            text.append(('', f'{prefix} [{check}] {display_text}\n'))  # style, string
        return text


def select_prompt(message: str, options: Sequence[Option]) -> List[str]:
    """
    Show a multi-select list and return the keys of the checked options.

    Space toggles the option under the cursor, `a` toggles all of them and
    enter confirms.
    """
    control = SelectControl(options)

    layout = Layout(
        HSplit(
            [
                Window(
                    height=Dimension.exact(1),
                    content=FormattedTextControl(
                        lambda: message + '\n',
                        show_cursor=False,
                    ),
                ),
                ConditionalContainer(
                    Window(
                        control,
                        height=Dimension(
                            max=min(len(control.options), MAX_VISIBLE_OPTIONS),
                        ),
                    ),
                    filter=~IsDone(),
                ),
            ]
        )
    )

    app: Application[List[str]] = Application(
        layout=layout,
        key_bindings=control.key_bindings,
        full_screen=False,
    )
    return app.run()
