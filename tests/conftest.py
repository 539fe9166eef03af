import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

import glgen

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

FIXTURE_GL_XML = Path(__file__).resolve().parent / "fixtures" / "gl_minimal.xml"


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    gl_xml = tmp_path / "gl.xml"
    gl_xml.write_text("<registry />\n", encoding="utf-8")

    output = tmp_path / "out" / "gl.rs"
    return {
        "gl_xml": gl_xml,
        "output": output,
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "api": None,
            "version": None,
            "profile": None,
            "gl_xml": existing_paths["gl_xml"],
            "output": existing_paths["output"],
            "rustfmt": False,
            "list_features": False,
            "info": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_registry_root() -> Callable[[str], ET.Element]:
    def _make_registry_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<registry>{inner_xml}</registry>")

    return _make_registry_root


@pytest.fixture
def make_registry(
    make_registry_root: Callable[[str], ET.Element],
) -> Callable[[str], glgen.Registry]:
    def _make_registry(inner_xml: str) -> glgen.Registry:
        return glgen.build_registry(make_registry_root(inner_xml))

    return _make_registry


@pytest.fixture
def fixture_gl_xml() -> Path:
    return FIXTURE_GL_XML


@pytest.fixture
def fixture_registry() -> glgen.Registry:
    return glgen.build_registry(glgen.read_registry(FIXTURE_GL_XML))
