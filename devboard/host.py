"""
Host UI collaborator contract.

The dashboard never talks to a terminal or window directly; it asks a
HostUI for folders, text, confirmations and (as a last resort) a browser
binary. Every method returns None / False when the user cancels.
"""
import os
import sys
from typing import Optional


class HostUI:
    """Interface the dashboard uses to collect user input."""

    def pick_folder(self, title: str) -> Optional[str]:
        raise NotImplementedError

    def prompt(self, message: str, default: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def confirm(self, message: str) -> bool:
        raise NotImplementedError

    def pick_binary(self, title: str) -> Optional[str]:
        raise NotImplementedError

    def info(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass


class TerminalUI(HostUI):
    """HostUI over stdin/stdout. EOF or Ctrl+C counts as cancel."""

    def __init__(self, assume_yes: bool = False):
        self.assume_yes = assume_yes

    def _ask(self, message: str) -> Optional[str]:
        try:
            return input(message)
        except (EOFError, KeyboardInterrupt):
            print()
            return None

    def prompt(self, message: str, default: Optional[str] = None) -> Optional[str]:
        suffix = f" [{default}]" if default else ""
        answer = self._ask(f"{message}{suffix}: ")
        if answer is None:
            return None
        answer = answer.strip()
        if not answer:
            return default
        return answer

    def pick_folder(self, title: str) -> Optional[str]:
        answer = self.prompt(title, default=os.getcwd())
        if answer and os.path.isdir(os.path.expanduser(answer)):
            return os.path.abspath(os.path.expanduser(answer))
        if answer:
            self.error(f"Not a directory: {answer}")
        return None

    def pick_binary(self, title: str) -> Optional[str]:
        answer = self.prompt(title)
        if answer and os.path.isfile(os.path.expanduser(answer)):
            return os.path.expanduser(answer)
        if answer:
            self.error(f"Not a file: {answer}")
        return None

    def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        answer = self._ask(f"{message} [y/N]: ")
        return bool(answer) and answer.strip().lower() in ("y", "yes")

    def info(self, message: str) -> None:
        print(message)

    def error(self, message: str) -> None:
        print(message, file=sys.stderr)
