"""
SuperRay TUI - Dialog Components
Modal dialogs for user interaction
"""

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, Static, Input
from textual.screen import ModalScreen


class ConfirmDialog(ModalScreen):
    """Confirmation dialog"""

    CSS = """
    ConfirmDialog {
        align: center middle;
    }

    #dialog {
        width: 60;
        height: auto;
        background: $surface;
        border: thick $primary;
        padding: 1 2;
    }

    #dialog-title {
        width: 100%;
        text-align: center;
        color: $accent;
        text-style: bold;
        margin-bottom: 1;
    }

    #dialog-buttons {
        margin-top: 1;
        height: auto;
    }

    #dialog-buttons Button {
        margin-right: 1;
    }
    """

    BINDINGS = [
        ("y", "confirm", "Yes"),
        ("n", "cancel", "No"),
        ("escape", "cancel", "Cancel"),
    ]

    def __init__(self, title: str, message: str):
        super().__init__()
        self.dialog_title = title
        self.dialog_message = message

    def compose(self) -> ComposeResult:
        with Container(id="dialog"):
            yield Static(self.dialog_title, id="dialog-title")
            yield Static(self.dialog_message, id="dialog-message")
            with Horizontal(id="dialog-buttons"):
                yield Button("Yes (y)", variant="error", id="confirm")
                yield Button("No (n)", variant="default", id="cancel")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm")

    def action_confirm(self):
        self.dismiss(True)

    def action_cancel(self):
        self.dismiss(False)


class SubscriptionDialog(ModalScreen):
    """Ask for the subscription URL"""

    CSS = """
    SubscriptionDialog {
        align: center middle;
    }

    #subscription-dialog {
        width: 80;
        height: auto;
        background: $surface;
        border: thick $primary;
        padding: 1 2;
    }

    #subscription-title {
        width: 100%;
        text-align: center;
        color: $accent;
        text-style: bold;
        margin-bottom: 1;
    }

    .subscription-buttons {
        margin-top: 1;
        height: auto;
    }

    .subscription-buttons Button {
        margin-right: 1;
    }
    """

    BINDINGS = [("escape", "cancel", "Cancel")]

    def __init__(self, current_url: str = ''):
        super().__init__()
        self.current_url = current_url

    def compose(self) -> ComposeResult:
        with Container(id="subscription-dialog"):
            yield Static("Subscription URL", id="subscription-title")
            yield Input(
                value=self.current_url,
                placeholder="https://example.com/sub?token=...",
                id="input-subscription"
            )
            with Horizontal(classes="subscription-buttons"):
                yield Button("Save", variant="success", id="btn-save-subscription")
                yield Button("Cancel", variant="default", id="btn-cancel-subscription")

    def on_mount(self) -> None:
        self.query_one("#input-subscription", Input).focus()

    def _submit(self):
        url = self.query_one("#input-subscription", Input).value.strip()
        self.dismiss(url or None)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-save-subscription":
            self._submit()
        else:
            self.dismiss(None)

    def action_cancel(self):
        self.dismiss(None)
