"""
Tests for discovery/identity.py
"""
import random
import re

import pytest

from discovery.identity import ADJECTIVES, ANIMALS, COLORS, IdentityService, generate_name


@pytest.fixture(autouse=True)
def no_name_override(monkeypatch):
    monkeypatch.delenv("JUSTSEND_DEVICE_NAME", raising=False)


def test_generated_name_shape():
    name = generate_name(random.Random(7))
    adjective, color, animal = name.split("-")
    assert adjective in ADJECTIVES
    assert color in COLORS
    assert animal in ANIMALS
    assert re.fullmatch(r"[a-z]+-[a-z]+-[a-z]+", name)


def test_name_persisted(temp_dir):
    first = IdentityService(config_dir=temp_dir)
    assert (temp_dir / "device_name").read_text() == first.name
    assert IdentityService(config_dir=temp_dir).name == first.name


def test_stored_name_used(temp_dir):
    (temp_dir / "device_name").write_text("calm-teal-owl\n")
    assert IdentityService(config_dir=temp_dir).name == "calm-teal-owl"


def test_empty_file_regenerates(temp_dir):
    (temp_dir / "device_name").write_text("   ")
    name = IdentityService(config_dir=temp_dir).name
    assert name.count("-") == 2


def test_env_override(temp_dir, monkeypatch):
    monkeypatch.setenv("JUSTSEND_DEVICE_NAME", "kitchen-laptop")
    assert IdentityService(config_dir=temp_dir).name == "kitchen-laptop"
    assert not (temp_dir / "device_name").exists()
