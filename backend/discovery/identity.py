"""
Identity Service for the device's durable display name.

The name is what other devices see in the relay's device list and what
peers use to address us, so it is generated once and kept on disk.
"""

import logging
import os
import random
from pathlib import Path

from config import CONFIG_DIR

logger = logging.getLogger(__name__)

ADJECTIVES = [
    "neon", "cosmic", "turbo", "silent", "electric", "quantum",
    "hidden", "mystic", "clever", "swift", "brave", "pixel",
    "sneaky", "bold", "lucky", "happy", "fierce", "calm",
]

COLORS = [
    "amber", "azure", "coral", "crimson", "indigo", "ivory",
    "jade", "lilac", "olive", "plum", "ruby", "teal",
]

ANIMALS = [
    "fox", "panda", "gopher", "bear", "snail", "owl",
    "wolf", "tiger", "hawk", "dolphin", "penguin", "falcon",
    "eagle", "lion", "shark", "whale", "octopus", "duck",
]


def generate_name(rng: random.Random | None = None) -> str:
    """Return a lower-case `adjective-color-animal` name."""
    rng = rng or random.Random()
    return "-".join((rng.choice(ADJECTIVES), rng.choice(COLORS), rng.choice(ANIMALS)))


class IdentityService:
    """Loads or creates this device's display name."""

    def __init__(self, config_dir: Path = CONFIG_DIR):
        self._name_path = Path(config_dir) / "device_name"
        self.name = os.environ.get("JUSTSEND_DEVICE_NAME") or self._load_or_generate_name()
        logger.info(f"Initialized IdentityService with name: {self.name}")

    def _load_or_generate_name(self) -> str:
        """Loads the stored name or creates a new one."""
        if self._name_path.exists():
            try:
                name = self._name_path.read_text().strip()
                if name:
                    return name
            except OSError as e:
                logger.warning(f"Failed to read stored device name: {e}. Generating new one.")

        name = generate_name()
        try:
            self._name_path.parent.mkdir(parents=True, exist_ok=True)
            self._name_path.write_text(name)
        except OSError as e:
            logger.warning(f"Failed to persist device name: {e}")
        return name
