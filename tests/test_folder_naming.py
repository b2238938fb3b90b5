"""Tests for utils.folder_naming."""

import pytest

from utils.folder_naming import PROJECTS_DIR, extract_project_name, get_project_dir, slugify


def test_slugify():
    assert slugify("  Hello, World_Shop ") == "hello-world-shop"


def test_extract_project_name_skips_filler():
    assert extract_project_name("Build me a landing page for a coffee roastery in Lisbon") == "landing-coffee-roastery"
    assert extract_project_name("make a website") == "project"


def test_get_project_dir_dedupes(tmp_path):
    first = get_project_dir("coffee shop", base_dir=str(tmp_path))
    assert first == str((tmp_path / PROJECTS_DIR / "coffee-shop").resolve())
    (tmp_path / PROJECTS_DIR / "coffee-shop").mkdir(parents=True)
    second = get_project_dir("coffee shop", base_dir=str(tmp_path))
    assert second.endswith("coffee-shop-2")


def test_get_project_dir_default_name(tmp_path):
    assert get_project_dir("!!!", base_dir=str(tmp_path)).endswith("project")
