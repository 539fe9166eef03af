from collections.abc import Callable

import pytest

import glgen

_SYMBOLS = """
<enums namespace="GL">
    <enum value="0x1" name="GL_A"/>
    <enum value="0x2" name="GL_B"/>
    <enum value="0x3" name="GL_C"/>
</enums>
<commands namespace="GL">
    <command><proto>void <name>glAlpha</name></proto></command>
    <command><proto>void <name>glBeta</name></proto></command>
    <command><proto>void <name>glGamma</name></proto></command>
</commands>
"""


def _target(api: str = "gl", version: str = "4.6", profile: str = "core") -> glgen.Target:
    return glgen.Target(api, glgen.parse_version(version), profile)


def _names(resolved: glgen.ResolvedRegistry) -> tuple[list[str], list[str]]:
    return [e.name for e in resolved.enums], [c.name for c in resolved.commands]


@pytest.fixture
def registry_with(
    make_registry: Callable[[str], glgen.Registry],
) -> Callable[[str], glgen.Registry]:
    def _registry_with(features_xml: str) -> glgen.Registry:
        return make_registry(_SYMBOLS + features_xml)

    return _registry_with


def test_core_removal_keeps_compatibility_symbols(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require><enum name="GL_A"/><command name="glAlpha"/></require></feature>'
        '<feature api="gl" name="GL_VERSION_3_2" number="3.2">'
        '<remove profile="core"><enum name="GL_A"/></remove></feature>'
    )

    core = glgen.resolve(registry, _target("gl", "3.2", "core"))
    compat = glgen.resolve(registry, _target("gl", "3.2", "compatibility"))

    assert _names(core) == ([], ["glAlpha"])
    assert _names(compat) == (["GL_A"], ["glAlpha"])


def test_version_gate_excludes_later_features(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require><command name="glAlpha"/></require></feature>'
        '<feature api="gl" name="GL_VERSION_4_5" number="4.5">'
        '<require><command name="glBeta"/></require></feature>'
    )

    resolved = glgen.reduce(registry, "gl", glgen.GLVersion(3, 3), "core")

    assert _names(resolved) == ([], ["glAlpha"])
    assert resolved.features == ("GL_VERSION_1_0",)


def test_resolve_is_idempotent_and_leaves_registry_untouched(
    fixture_registry: glgen.Registry,
) -> None:
    before = fixture_registry
    snapshot = (before.enums, before.commands, before.features)
    target = _target("gl", "4.6", "core")

    first = glgen.resolve(fixture_registry, target)
    second = glgen.resolve(fixture_registry, target)

    assert first == second
    assert (before.enums, before.commands, before.features) == snapshot


def test_resolve_same_registry_for_multiple_targets(
    fixture_registry: glgen.Registry,
) -> None:
    core = glgen.resolve(fixture_registry, _target("gl", "4.6", "core"))
    compat = glgen.resolve(fixture_registry, _target("gl", "4.6", "compatibility"))
    gles = glgen.resolve(fixture_registry, _target("gles2", "2.0", "common"))

    assert len(core.commands) == 9
    assert len(compat.commands) == 10
    assert _names(gles) == (
        ["GL_COLOR_BUFFER_BIT", "GL_TRIANGLES"],
        ["glClear", "glDrawElements"],
    )


@pytest.mark.parametrize(
    ("version", "expected_commands"),
    [
        (
            "1.1",
            [
                "glAccum",
                "glBindTexture",
                "glClear",
                "glDrawElements",
                "glGenTextures",
                "glGetPointerv",
                "glGetString",
            ],
        ),
        (
            "3.2",
            [
                "glBindTexture",
                "glClear",
                "glDrawElements",
                "glFenceSync",
                "glGenTextures",
                "glGetString",
                "glShaderSource",
            ],
        ),
        (
            "4.6",
            [
                "glBindTexture",
                "glClear",
                "glDebugMessageCallback",
                "glDrawElements",
                "glFenceSync",
                "glGenTextures",
                "glGetPointerv",
                "glGetString",
                "glShaderSource",
            ],
        ),
    ],
)
def test_fixture_core_profile_across_versions(
    fixture_registry: glgen.Registry,
    version: str,
    expected_commands: list[str],
) -> None:
    resolved = glgen.resolve(fixture_registry, _target("gl", version, "core"))

    assert [c.name for c in resolved.commands] == expected_commands


def test_monotone_without_removals(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require><enum name="GL_A"/><command name="glAlpha"/></require></feature>'
        '<feature api="gl" name="GL_VERSION_2_0" number="2.0">'
        '<require><enum name="GL_B"/></require></feature>'
        '<feature api="gl" name="GL_VERSION_3_0" number="3.0">'
        '<require><command name="glGamma"/></require></feature>'
    )

    previous: set[str] = set()
    for version in ("1.0", "2.0", "3.0", "4.6"):
        enums, commands = _names(glgen.resolve(registry, _target(version=version)))
        current = set(enums) | set(commands)
        assert previous <= current
        previous = current


def test_remove_of_absent_name_is_noop(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require><command name="glAlpha"/></require>'
        '<remove><command name="glBeta"/><enum name="GL_C"/></remove></feature>'
    )

    assert _names(glgen.resolve(registry, _target())) == ([], ["glAlpha"])


def test_require_and_remove_at_same_level_nets_absent(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<remove><command name="glAlpha"/></remove>'
        '<require><command name="glAlpha"/><command name="glBeta"/></require></feature>'
    )

    assert _names(glgen.resolve(registry, _target())) == ([], ["glBeta"])


def test_later_require_restores_removed_name(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require><command name="glAlpha"/></require></feature>'
        '<feature api="gl" name="GL_VERSION_3_2" number="3.2">'
        '<remove><command name="glAlpha"/></remove></feature>'
        '<feature api="gl" name="GL_VERSION_4_3" number="4.3">'
        '<require><command name="glAlpha"/></require></feature>'
    )

    assert _names(glgen.resolve(registry, _target(version="3.3")))[1] == []
    assert _names(glgen.resolve(registry, _target(version="4.3")))[1] == ["glAlpha"]


def test_scope_matching_is_exact_or_unscoped(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require profile="compatibility"><command name="glAlpha"/></require>'
        '<require api="gles2"><command name="glBeta"/></require>'
        '<require api="gl" profile="core"><command name="glGamma"/></require>'
        "</feature>"
    )

    resolved = glgen.resolve(registry, _target(profile="core"))

    assert _names(resolved) == ([], ["glGamma"])


def test_other_api_features_are_never_folded(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gles2" name="GL_ES_VERSION_2_0" number="2.0">'
        '<require><command name="glAlpha"/></require></feature>'
    )

    resolved = glgen.resolve(registry, _target("gl", "4.6", "core"))

    assert resolved.features == ()
    assert resolved.enums == ()
    assert resolved.commands == ()


def test_select_features_sorts_by_version_not_document_order(
    fixture_registry: glgen.Registry,
) -> None:
    selected = glgen.select_features(fixture_registry.features, _target())

    assert [f.name for f in selected] == [
        "GL_VERSION_1_0",
        "GL_VERSION_1_1",
        "GL_VERSION_2_0",
        "GL_VERSION_3_2",
        "GL_VERSION_4_3",
    ]


def test_select_features_orders_out_of_order_document(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_3_10" number="3.10"><require/></feature>'
        '<feature api="gl" name="GL_VERSION_3_2" number="3.2"><require/></feature>'
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0"><require/></feature>'
    )

    selected = glgen.select_features(registry.features, _target(version="4.0"))

    assert [f.name for f in selected] == [
        "GL_VERSION_1_0",
        "GL_VERSION_3_2",
        "GL_VERSION_3_10",
    ]


def test_block_matches_truth_table() -> None:
    target = _target("gl", "4.6", "core")

    assert glgen.block_matches(glgen.ScopedBlock(None, None, (), ()), target)
    assert glgen.block_matches(glgen.ScopedBlock("gl", "core", (), ()), target)
    assert not glgen.block_matches(glgen.ScopedBlock("gles2", None, (), ()), target)
    assert not glgen.block_matches(
        glgen.ScopedBlock(None, "compatibility", (), ()), target
    )


def test_resolved_symbols_keep_registry_order(
    registry_with: Callable[[str], glgen.Registry],
) -> None:
    registry = registry_with(
        '<feature api="gl" name="GL_VERSION_1_0" number="1.0">'
        '<require><enum name="GL_C"/><enum name="GL_A"/>'
        '<command name="glGamma"/><command name="glAlpha"/></require></feature>'
    )

    assert _names(glgen.resolve(registry, _target())) == (
        ["GL_A", "GL_C"],
        ["glAlpha", "glGamma"],
    )
