from typing import Any, MutableMapping

from multilink.constants import UD_PREFS

KEY_THEME = "app_theme"


class PreferenceStore:
    """Named key-value preference set stored inside a mutable mapping.

    In the bot the mapping is a user's ``user_data``, which the application's
    persistence writes to disk. Last write wins.
    """

    def __init__(self, backing: MutableMapping[str, Any], name: str = UD_PREFS):
        self._backing = backing
        self.name = name

    def _prefs(self) -> MutableMapping[str, Any]:
        prefs = self._backing.get(self.name)
        if not isinstance(prefs, dict):
            prefs = {}
            self._backing[self.name] = prefs
        return prefs

    def save_theme(self, is_dark: bool) -> None:
        self._prefs()[KEY_THEME] = bool(is_dark)

    def is_dark_theme(self) -> bool:
        value = self._backing.get(self.name, {})
        if not isinstance(value, dict):
            return False
        return value.get(KEY_THEME, False) is True
