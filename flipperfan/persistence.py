import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from .constants import MAX_SPEED
from .types import AccessoryState

DEFAULT_STATE_FILE = os.path.join(os.path.expanduser("~"), ".flipperfan_state.json")
logger = logging.getLogger(__name__)


class JsonStateStore:
    """
    Keeps the last settled fan state in a small JSON file so that the fan
    does not receive a spurious command after a restart.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_STATE_FILE) -> None:
        self.path = Path(path)

    def load(self) -> Optional[AccessoryState]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = AccessoryState(on=bool(data["on"]), speed=int(data["speed"]))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Could not read fan state from %s: %s", self.path, e)
            return None

        if not 0 <= state.speed <= MAX_SPEED:
            logger.warning("Ignoring stored speed %s from %s", state.speed, self.path)
            return None
        logger.debug("Loaded fan state %s from %s", state, self.path)
        return state

    def save(self, state: AccessoryState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=4)
        os.replace(tmp_path, self.path)
        logger.debug("Saved fan state %s to %s", state, self.path)
