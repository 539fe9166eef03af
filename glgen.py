"""OpenGL FFI bindings generator for Rust.

Generates a single `gl.rs` binding module from the Khronos gl.xml registry,
reduced to exactly one (api, version, profile) target.

Usage:
    python glgen.py --api gl --version 4.6 --profile core --output generated/gl.rs
"""

import argparse
import re
import subprocess
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from collections.abc import Callable, Iterable
from typing import NamedTuple, TypeVar

PROJECT_ROOT = Path(__file__).parent
DEFAULT_GL_XML = PROJECT_ROOT / "OpenGL-Registry" / "xml" / "gl.xml"
DEFAULT_OUTPUT = PROJECT_ROOT / "generated" / "gl.rs"


# ===--- CLI config contracts ---=== #


class GLVersion(NamedTuple):
    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


VALID_APIS: tuple[str, ...] = ("gl", "gles1", "gles2", "glsc2")
VALID_PROFILES: tuple[str, ...] = ("core", "compatibility", "common")

DEFAULT_API = "gl"
DEFAULT_VERSION = GLVersion(4, 6)
DEFAULT_PROFILE = "core"


@dataclass(frozen=True)
class GenerateConfig:
    api: str
    version: GLVersion
    profile: str
    gl_xml: Path
    output: Path
    rustfmt: bool = False


@dataclass(frozen=True)
class DiscoveryConfig:
    command: str
    api_filter: str | None
    info_feature: str | None
    gl_xml: Path


VALID_ERROR_CODES = {
    "INVALID_API",
    "INVALID_PROFILE",
    "INVALID_VERSION",
    "INVALID_FEATURE_NAME",
    "CONFLICT_GENERATE_DISCOVERY",
    "API_FILTER_WITHOUT_LIST",
    "PATH_NOT_FOUND",
}
_VERSION_RE = re.compile(r"^(\d+)\.(\d+)$")
_FEATURE_NAME_RE = re.compile(r"^GL(_ES|_SC)?_VERSION(_ES_CM)?_\d+_\d+$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def parse_version(raw: str) -> GLVersion:
    match = _VERSION_RE.match(raw)
    if match is None:
        raise ConfigError(
            "INVALID_VERSION",
            f"Unsupported OpenGL version: {raw}",
            "Use the major.minor form, for example 3.3 or 4.6.",
        )
    return GLVersion(int(match.group(1)), int(match.group(2)))


def parse_api(raw: str) -> str:
    if raw in VALID_APIS:
        return raw
    raise ConfigError(
        "INVALID_API",
        f"Unknown api: {raw}",
        f"Use one of: {', '.join(VALID_APIS)}.",
    )


def parse_profile(raw: str) -> str:
    if raw in VALID_PROFILES:
        return raw
    raise ConfigError(
        "INVALID_PROFILE",
        f"Unknown profile: {raw}",
        f"Use one of: {', '.join(VALID_PROFILES)}.",
    )


def validate_feature_name(name: str) -> str:
    if _FEATURE_NAME_RE.match(name):
        return name
    raise ConfigError(
        "INVALID_FEATURE_NAME",
        f"Invalid feature name: {name}",
        "Feature names look like GL_VERSION_3_3, GL_ES_VERSION_3_2 or GL_SC_VERSION_2_0.",
    )


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


_GL_XML_SUGGESTION = (
    "Clone OpenGL-Registry:\n"
    "  git clone https://github.com/KhronosGroup/OpenGL-Registry.git OpenGL-Registry\n"
    "Or pass a custom path: --gl-xml /your/path/to/gl.xml"
)


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate OpenGL bindings for Rust")

    parser.add_argument("--api", type=str, default=None)
    parser.add_argument("--version", type=str, default=None)
    parser.add_argument("--profile", type=str, default=None)

    parser.add_argument("--gl-xml", type=Path, default=DEFAULT_GL_XML)
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT)
    parser.add_argument("--rustfmt", action="store_true", default=False)

    discovery_group = parser.add_mutually_exclusive_group()
    discovery_group.add_argument(
        "--list-features", action="store_true", default=False
    )
    discovery_group.add_argument("--info", type=str, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig | DiscoveryConfig:
    has_generate_input = bool(args.version or args.profile or args.rustfmt)
    has_discovery_command = bool(args.list_features or args.info)

    if has_generate_input and has_discovery_command:
        raise ConfigError(
            "CONFLICT_GENERATE_DISCOVERY",
            "Generate flags cannot be combined with discovery flags.",
            "Choose either generate mode or one discovery command.",
        )

    api = parse_api(args.api) if args.api is not None else None

    if has_discovery_command:
        if args.info is not None and api is not None:
            raise ConfigError(
                "API_FILTER_WITHOUT_LIST",
                "--api filtering only applies to --list-features.",
                "Drop --api or use --list-features instead of --info.",
            )
        gl_xml = validate_path_exists(args.gl_xml, "--gl-xml", _GL_XML_SUGGESTION)
        info_feature = (
            validate_feature_name(args.info) if args.info is not None else None
        )
        return DiscoveryConfig(
            command="list-features" if args.list_features else "info",
            api_filter=api,
            info_feature=info_feature,
            gl_xml=gl_xml,
        )

    version = parse_version(args.version) if args.version else DEFAULT_VERSION
    profile = parse_profile(args.profile) if args.profile else DEFAULT_PROFILE
    gl_xml = validate_path_exists(args.gl_xml, "--gl-xml", _GL_XML_SUGGESTION)

    return GenerateConfig(
        api=api or DEFAULT_API,
        version=version,
        profile=profile,
        gl_xml=gl_xml,
        output=args.output,
        rustfmt=bool(args.rustfmt),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | DiscoveryConfig:
    return validate_config(parse_args(argv))


# ===--- Registry errors ---=== #

VALID_REGISTRY_ERROR_CODES = {
    "INVALID_DOCUMENT",
    "MISSING_ATTRIBUTE",
    "UNKNOWN_TAG",
    "UNKNOWN_API",
    "UNKNOWN_PROFILE",
    "INVALID_VERSION",
    "UNCLASSIFIABLE_TYPE",
    "DUPLICATE_COMMAND",
    "UNRESOLVED_REFERENCE",
}


class RegistryError(Exception):
    """Fatal schema drift or data error found while building the registry model."""

    def __init__(self, code: str, message: str):
        if code not in VALID_REGISTRY_ERROR_CODES:
            raise ValueError(f"Unknown registry error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message


class EmitError(Exception):
    """Resolved registry cannot be rendered without dangling references."""


# ===--- Constants ---=== #

# Uses a negative value encoding that does not fit GLenum.
SKIPPED_ENUM_GROUPS = {"TransformFeedbackTokenNV"}

COMMAND_CHILD_TAGS = {"proto", "param", "alias", "glx", "vecequiv"}
SCOPED_BLOCK_CHILD_TAGS = {"enum", "command", "type"}

RUST_KEYWORDS = frozenset(
    {
        "as", "break", "const", "continue", "crate", "else", "enum", "extern",
        "false", "fn", "for", "if", "impl", "in", "let", "loop", "match", "mod",
        "move", "mut", "pub", "ref", "return", "self", "Self", "static",
        "struct", "super", "trait", "true", "type", "unsafe", "use", "where",
        "while", "async", "await", "dyn", "abstract", "become", "box", "do",
        "final", "macro", "override", "priv", "typeof", "unsized", "virtual",
        "yield", "try",
    }
)

# Keywords Rust refuses as raw identifiers (`r#self` is invalid).
RUST_NON_RAW_KEYWORDS = frozenset({"self", "Self", "crate", "super"})

U64_MAX_LITERAL = "0xFFFFFFFFFFFFFFFF"

# Loader addresses below this are reserved sentinels, never real entry points.
LOADER_RESERVED_ADDRESS_LIMIT = 8

DEBUG_CALLBACK_TYPES = {
    "GLDEBUGPROC",
    "GLDEBUGPROCARB",
    "GLDEBUGPROCKHR",
    "GLDEBUGPROCAMD",
}

RUST_TYPE_PREAMBLE = """\
#[cfg(not(feature = "std"))]
use core::ffi::{c_char, c_double, c_float, c_int, c_short, c_uchar, c_uint, c_ushort, c_void};
#[cfg(feature = "std")]
use std::os::raw::{c_char, c_double, c_float, c_int, c_short, c_uchar, c_uint, c_ushort, c_void};

pub type GLvoid = c_void;
pub type GLbyte = c_char;
pub type GLubyte = c_uchar;
pub type GLchar = c_char;
pub type GLcharARB = c_char;
pub type GLboolean = c_uchar;
pub type GLshort = c_short;
pub type GLushort = c_ushort;
pub type GLint = c_int;
pub type GLuint = c_uint;
pub type GLint64 = i64;
pub type GLuint64 = u64;
pub type GLint64EXT = i64;
pub type GLuint64EXT = u64;
pub type GLintptr = isize;
pub type GLsizeiptr = isize;
pub type GLintptrARB = isize;
pub type GLsizeiptrARB = isize;
pub type GLsizei = GLint;
pub type GLclampx = c_int;
pub type GLfixed = GLint;
pub type GLhalf = c_ushort;
pub type GLhalfARB = c_ushort;
pub type GLhalfNV = c_ushort;
pub type GLenum = c_uint;
pub type GLbitfield = c_uint;
pub type GLfloat = c_float;
pub type GLdouble = c_double;
pub type GLclampf = c_float;
pub type GLclampd = c_double;
#[cfg(target_os = "macos")]
pub type GLhandleARB = *const c_void;
#[cfg(not(target_os = "macos"))]
pub type GLhandleARB = c_uint;
pub enum __GLsync {}
pub type GLsync = *const __GLsync;
pub enum _cl_context {}
pub enum _cl_event {}
pub type GLvdpauSurfaceNV = GLintptr;
pub type GLeglClientBufferEXT = *const c_void;
pub type GLeglImageOES = *const c_void;
pub type GLDEBUGPROC = extern "system" fn(
    source: GLenum,
    type_: GLenum,
    id: GLuint,
    severity: GLenum,
    length: GLsizei,
    message: *const GLchar,
    userParam: *mut c_void,
);
pub type GLDEBUGPROCARB = extern "system" fn(
    source: GLenum,
    type_: GLenum,
    id: GLuint,
    severity: GLenum,
    length: GLsizei,
    message: *const GLchar,
    userParam: *mut c_void,
);
pub type GLDEBUGPROCKHR = extern "system" fn(
    source: GLenum,
    type_: GLenum,
    id: GLuint,
    severity: GLenum,
    length: GLsizei,
    message: *const GLchar,
    userParam: *mut c_void,
);
pub type GLDEBUGPROCAMD = extern "system" fn(
    id: GLuint,
    category: GLenum,
    severity: GLenum,
    length: GLsizei,
    message: *const GLchar,
    userParam: *mut GLvoid,
);
pub type GLVULKANPROCNV = extern "system" fn();"""

PREAMBLE_TYPE_NAMES: frozenset[str] = frozenset(
    re.findall(r"^pub (?:type|enum) (\w+)", RUST_TYPE_PREAMBLE, re.MULTILINE)
)
"""Every type name the static preamble declares.

Command signatures may only reference these names (plus `void`, which renders
as `c_void`). check_type_closure enforces this before anything is written."""


# ===--- Type model ---=== #


@dataclass(frozen=True)
class NamedType:
    name: str


@dataclass(frozen=True)
class PointerType:
    """Pointer to `pointee`; `const` is the constness of the pointee."""

    pointee: "NamedType | PointerType"
    const: bool


TypeRef = NamedType | PointerType

MAX_POINTER_DEPTH = 2

_TYPE_TOKEN_RE = re.compile(r"\*|[A-Za-z_][A-Za-z0-9_]*|\S+")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_type_ref(text: str) -> TypeRef:
    """Classify a C type fragment from gl.xml into a TypeRef.

    Accepts the declarator shape `[const] T (* [const])*` with at most
    MAX_POINTER_DEPTH pointer levels. The `struct` keyword is dropped. A
    `const` directly after a `*` qualifies the pointer itself, so it becomes
    the pointee constness of the next outer level; after the last `*` it has
    no effect on the rendered type.

    Args:
        text: Raw text preceding the parameter or command name, e.g.
            "const GLchar *const*".

    Returns:
        NamedType for a bare type, PointerType for one or two pointer levels.

    Raises:
        RegistryError: UNCLASSIFIABLE_TYPE for any other token sequence.
    """
    tokens = [tok for tok in _TYPE_TOKEN_RE.findall(text) if tok != "struct"]

    def _fail(reason: str) -> RegistryError:
        return RegistryError(
            "UNCLASSIFIABLE_TYPE",
            f"Cannot classify type {text.strip()!r}: {reason}",
        )

    pos = 0
    leading_const = False
    if tokens and tokens[0] == "const":
        leading_const = True
        pos = 1

    if pos >= len(tokens):
        raise _fail("missing base type")
    base = tokens[pos]
    if base == "const" or not _IDENTIFIER_RE.match(base):
        raise _fail(f"unexpected token {base!r}")
    pos += 1

    current: TypeRef = NamedType(base)
    pointee_const = leading_const
    depth = 0
    while pos < len(tokens):
        if tokens[pos] != "*":
            raise _fail(f"unexpected token {tokens[pos]!r}")
        pos += 1
        depth += 1
        current = PointerType(current, pointee_const)
        pointee_const = False
        if pos < len(tokens) and tokens[pos] == "const":
            pointee_const = True
            pos += 1

    if depth > MAX_POINTER_DEPTH:
        raise _fail(f"{depth} pointer levels (max {MAX_POINTER_DEPTH})")
    return current


def base_type_name(type_ref: TypeRef) -> str:
    while isinstance(type_ref, PointerType):
        type_ref = type_ref.pointee
    return type_ref.name


def is_pointer(type_ref: TypeRef) -> bool:
    return isinstance(type_ref, PointerType)


def render_rust_type(type_ref: TypeRef) -> str:
    if isinstance(type_ref, PointerType):
        qualifier = "*const" if type_ref.const else "*mut"
        return f"{qualifier} {render_rust_type(type_ref.pointee)}"
    if type_ref.name == "void":
        return "c_void"
    return type_ref.name


# ===--- Data classes ---=== #


@dataclass(frozen=True)
class EnumDef:
    name: str
    value: str
    is_bitmask: bool


@dataclass(frozen=True)
class Param:
    name: str
    type_ref: TypeRef


@dataclass(frozen=True)
class CommandDef:
    name: str
    params: tuple[Param, ...]
    return_type: TypeRef | None


@dataclass(frozen=True)
class ScopedBlock:
    """One <require> or <remove> delta inside a feature level.

    api/profile of None means the block applies to every target that selects
    the enclosing feature.
    """

    api: str | None
    profile: str | None
    enums: tuple[str, ...]
    commands: tuple[str, ...]
    comment: str | None = None


@dataclass(frozen=True)
class FeatureBlock:
    name: str
    api: str
    version: GLVersion
    requires: tuple[ScopedBlock, ...]
    removes: tuple[ScopedBlock, ...]


@dataclass(frozen=True)
class Registry:
    """Full, immutable model of one gl.xml document.

    Resolution never mutates a Registry, so one parse can be resolved for any
    number of targets.

    Attributes:
        enums: Enum definitions in document order (later duplicates replace
            earlier definitions in place).
        commands: Command definitions in document order.
        features: Feature levels in document order.
    """

    enums: tuple[EnumDef, ...]
    commands: tuple[CommandDef, ...]
    features: tuple[FeatureBlock, ...]

    @property
    def enum_names(self) -> frozenset[str]:
        return frozenset(e.name for e in self.enums)

    @property
    def command_names(self) -> frozenset[str]:
        return frozenset(c.name for c in self.commands)


# ===--- XML parsing ---=== #


def load_registry_root(text: str) -> ET.Element:
    """Parse registry text into its root element.

    ET.ParseError propagates unchanged for malformed documents.

    Raises:
        RegistryError: INVALID_DOCUMENT when the root element is not <registry>.
    """
    root = ET.fromstring(text)
    if root.tag != "registry":
        raise RegistryError(
            "INVALID_DOCUMENT",
            f"Expected <registry> root element, found <{root.tag}>",
        )
    return root


def read_registry(path: Path) -> ET.Element:
    return load_registry_root(Path(path).read_text(encoding="utf-8"))


def _required_attr(el: ET.Element, attr: str, context: str) -> str:
    value = el.get(attr)
    if value is None:
        raise RegistryError(
            "MISSING_ATTRIBUTE",
            f"<{el.tag}> in {context} is missing required attribute '{attr}'",
        )
    return value


def _registry_api(raw: str, context: str) -> str:
    if raw not in VALID_APIS:
        raise RegistryError("UNKNOWN_API", f"Unknown api '{raw}' in {context}")
    return raw


def _registry_profile(raw: str, context: str) -> str:
    if raw not in VALID_PROFILES:
        raise RegistryError(
            "UNKNOWN_PROFILE", f"Unknown profile '{raw}' in {context}"
        )
    return raw


def parse_feature_version(raw: str, context: str) -> GLVersion:
    match = _VERSION_RE.match(raw.strip())
    if match is None:
        raise RegistryError(
            "INVALID_VERSION", f"Invalid feature number '{raw}' in {context}"
        )
    return GLVersion(int(match.group(1)), int(match.group(2)))


def parse_enums_block(block: ET.Element) -> list[EnumDef]:
    if block.get("group") in SKIPPED_ENUM_GROUPS:
        return []
    is_bitmask = block.get("type") == "bitmask"
    context = f"<enums namespace={block.get('namespace', '?')!r}>"
    enums = []
    for val in block.findall("enum"):
        name = _required_attr(val, "name", context)
        value = _required_attr(val, "value", f"enum {name}")
        enums.append(EnumDef(name, value, is_bitmask))
    return enums


def collect_type_text(el: ET.Element) -> str:
    """Return the C type text of a <proto> or <param>, i.e. everything before <name>."""
    parts = [el.text or ""]
    for child in el:
        if child.tag == "name":
            break
        parts.append(child.text or "")
        parts.append(child.tail or "")
    return " ".join(parts)


def _element_name(el: ET.Element, context: str) -> str:
    name_el = el.find("name")
    if name_el is None or not (name_el.text or "").strip():
        raise RegistryError(
            "MISSING_ATTRIBUTE", f"<{el.tag}> in {context} has no <name>"
        )
    return name_el.text.strip()


def parse_param(p: ET.Element, command_name: str) -> Param:
    name = _element_name(p, command_name)
    return Param(name, parse_type_ref(collect_type_text(p)))


def parse_command(cmd: ET.Element) -> CommandDef:
    proto = cmd.find("proto")
    if proto is None:
        raise RegistryError("MISSING_ATTRIBUTE", "<command> has no <proto>")
    name = _element_name(proto, "<command>")

    params = []
    for child in cmd:
        if child.tag not in COMMAND_CHILD_TAGS:
            raise RegistryError(
                "UNKNOWN_TAG", f"Unknown tag <{child.tag}> in command {name}"
            )
        if child.tag == "param":
            params.append(parse_param(child, name))

    return_type = parse_type_ref(collect_type_text(proto))
    if return_type == NamedType("void"):
        return_type = None
    return CommandDef(name, tuple(params), return_type)


def parse_scoped_block(el: ET.Element, feature_name: str) -> ScopedBlock:
    context = f"<{el.tag}> of {feature_name}"
    api = el.get("api")
    profile = el.get("profile")
    enums: list[str] = []
    commands: list[str] = []
    for child in el:
        if child.tag not in SCOPED_BLOCK_CHILD_TAGS:
            raise RegistryError("UNKNOWN_TAG", f"Unknown tag <{child.tag}> in {context}")
        if child.tag == "enum":
            enums.append(_required_attr(child, "name", context))
        elif child.tag == "command":
            commands.append(_required_attr(child, "name", context))
    return ScopedBlock(
        api=_registry_api(api, context) if api is not None else None,
        profile=_registry_profile(profile, context) if profile is not None else None,
        enums=tuple(enums),
        commands=tuple(commands),
        comment=el.get("comment"),
    )


def parse_feature(feat: ET.Element) -> FeatureBlock:
    name = feat.get("name", "")
    context = f"feature {name or '?'}"
    api = _registry_api(_required_attr(feat, "api", context), context)
    version = parse_feature_version(_required_attr(feat, "number", context), context)

    requires: list[ScopedBlock] = []
    removes: list[ScopedBlock] = []
    for child in feat:
        if child.tag == "require":
            requires.append(parse_scoped_block(child, name))
        elif child.tag == "remove":
            removes.append(parse_scoped_block(child, name))
        else:
            raise RegistryError("UNKNOWN_TAG", f"Unknown tag <{child.tag}> in {context}")

    return FeatureBlock(name, api, version, tuple(requires), tuple(removes))


def validate_references(registry: Registry) -> None:
    """Ensure every require/remove name exists in the registry symbol tables.

    Raises:
        RegistryError: UNRESOLVED_REFERENCE naming the first offending feature
            and its unknown symbols.
    """
    enum_names = registry.enum_names
    command_names = registry.command_names
    for feature in registry.features:
        missing: set[str] = set()
        for block in feature.requires + feature.removes:
            missing.update(n for n in block.enums if n not in enum_names)
            missing.update(n for n in block.commands if n not in command_names)
        if missing:
            raise RegistryError(
                "UNRESOLVED_REFERENCE",
                f"{feature.name} references unknown symbols: "
                f"{', '.join(sorted(missing))}",
            )


def build_registry(root: ET.Element) -> Registry:
    """Build the full registry model in one pass over the document tree.

    Enum definitions are keyed by name; a later definition replaces an
    earlier one and keeps its position. Top-level children other than
    <enums>, <commands> and <feature> are ignored.

    Args:
        root: Registry root element from load_registry_root.

    Returns:
        Immutable Registry with every reference validated.

    Raises:
        RegistryError: On any schema drift or unresolved reference.
    """
    if root.tag != "registry":
        raise RegistryError(
            "INVALID_DOCUMENT",
            f"Expected <registry> root element, found <{root.tag}>",
        )

    enums: dict[str, EnumDef] = {}
    commands: dict[str, CommandDef] = {}
    features: list[FeatureBlock] = []

    for node in root:
        if node.tag == "enums":
            for enum_def in parse_enums_block(node):
                enums[enum_def.name] = enum_def
        elif node.tag == "commands":
            for cmd_el in node.findall("command"):
                cmd = parse_command(cmd_el)
                if cmd.name in commands:
                    raise RegistryError(
                        "DUPLICATE_COMMAND", f"Command {cmd.name} is defined twice"
                    )
                commands[cmd.name] = cmd
        elif node.tag == "feature":
            features.append(parse_feature(node))

    registry = Registry(
        enums=tuple(enums.values()),
        commands=tuple(commands.values()),
        features=tuple(features),
    )
    validate_references(registry)
    return registry


# ===--- Feature resolution ---=== #


@dataclass(frozen=True)
class Target:
    api: str
    version: GLVersion
    profile: str

    def __str__(self) -> str:
        return f"{self.api} {self.version} {self.profile}"


@dataclass(frozen=True)
class ResolvedRegistry:
    """The registry reduced to exactly one target.

    Attributes:
        target: The (api, version, profile) triple this view was resolved for.
        features: Names of the folded feature levels, ascending by version.
        enums: Surviving enums in registry order.
        commands: Surviving commands in registry order.
    """

    target: Target
    features: tuple[str, ...]
    enums: tuple[EnumDef, ...]
    commands: tuple[CommandDef, ...]


def select_features(
    features: Iterable[FeatureBlock], target: Target
) -> list[FeatureBlock]:
    """Return the target api's feature levels up to target.version, ascending.

    The sort is stable, so levels sharing a version keep document order.
    """
    selected = [
        f for f in features if f.api == target.api and f.version <= target.version
    ]
    return sorted(selected, key=lambda f: f.version)


def block_matches(block: ScopedBlock, target: Target) -> bool:
    return (block.api is None or block.api == target.api) and (
        block.profile is None or block.profile == target.profile
    )


def fold_features(
    features: Iterable[FeatureBlock], target: Target
) -> tuple[frozenset[str], frozenset[str]]:
    """Fold ordered feature levels into the final enum and command name sets.

    Within each level all matching requires are applied before any matching
    remove, so a name required and removed at the same level ends up absent.
    Removing a name that is not present is a no-op.

    Args:
        features: Feature levels already selected and sorted by select_features.
        target: Target whose api/profile decides which scoped blocks apply.

    Returns:
        Tuple of (enum names, command names).
    """
    required_enums: set[str] = set()
    required_commands: set[str] = set()

    for feature in features:
        for require in feature.requires:
            if block_matches(require, target):
                required_enums.update(require.enums)
                required_commands.update(require.commands)
        for remove in feature.removes:
            if block_matches(remove, target):
                required_enums.difference_update(remove.enums)
                required_commands.difference_update(remove.commands)

    return frozenset(required_enums), frozenset(required_commands)


ItemT = TypeVar("ItemT")


def filter_by_names(
    items: Iterable[ItemT],
    names: frozenset[str],
    key: Callable[[ItemT], str],
) -> list[ItemT]:
    """Return the items whose key is in names, preserving input order."""
    return [item for item in items if key(item) in names]


def resolve(registry: Registry, target: Target) -> ResolvedRegistry:
    """Reduce a registry to the symbol set selected by one target.

    Pure: the registry is left untouched. A target matching no feature level
    yields an empty (but valid) ResolvedRegistry.
    """
    selected = select_features(registry.features, target)
    enum_names, command_names = fold_features(selected, target)
    return ResolvedRegistry(
        target=target,
        features=tuple(f.name for f in selected),
        enums=tuple(filter_by_names(registry.enums, enum_names, key=lambda e: e.name)),
        commands=tuple(
            filter_by_names(registry.commands, command_names, key=lambda c: c.name)
        ),
    )


def reduce(
    registry: Registry, api: str, version: GLVersion, profile: str
) -> ResolvedRegistry:
    return resolve(registry, Target(api, version, profile))


# ===--- Discovery commands ---=== #


@dataclass(frozen=True)
class FeatureSummary:
    """One row of the --list-features table.

    Counts are raw registry content: distinct names across all of the level's
    require (added) or remove (removed) blocks, regardless of scope.
    """

    name: str
    api: str
    version: GLVersion
    added_enum_count: int
    added_command_count: int
    removed_enum_count: int
    removed_command_count: int


def _distinct_names(blocks: Iterable[ScopedBlock], attr: str) -> set[str]:
    names: set[str] = set()
    for block in blocks:
        names.update(getattr(block, attr))
    return names


def gather_feature_summaries(
    registry: Registry, api_filter: str | None = None
) -> list[FeatureSummary]:
    summaries = []
    for feature in registry.features:
        if api_filter is not None and feature.api != api_filter:
            continue
        summaries.append(
            FeatureSummary(
                name=feature.name,
                api=feature.api,
                version=feature.version,
                added_enum_count=len(_distinct_names(feature.requires, "enums")),
                added_command_count=len(_distinct_names(feature.requires, "commands")),
                removed_enum_count=len(_distinct_names(feature.removes, "enums")),
                removed_command_count=len(_distinct_names(feature.removes, "commands")),
            )
        )
    summaries.sort(key=lambda s: (VALID_APIS.index(s.api), s.version))
    return summaries


def find_feature(registry: Registry, name: str) -> FeatureBlock | None:
    for feature in registry.features:
        if feature.name == name:
            return feature
    return None


def format_scope(block: ScopedBlock) -> str:
    parts = []
    if block.api is not None:
        parts.append(f"api={block.api}")
    if block.profile is not None:
        parts.append(f"profile={block.profile}")
    return ", ".join(parts) if parts else "all profiles"


def format_features_table(summaries: list[FeatureSummary], source_label: str) -> str:
    """Return the complete --list-features output as a string.

    Output format:

        3 feature levels in gl.xml:

          GL_VERSION_1_0    gl    1.0    +2 enums   +2 cmds
          GL_VERSION_3_2    gl    3.2    +1 enums   +0 cmds   removes 1 enums, 0 cmds

    Name and api column widths follow the widest value. The removal column
    is omitted for levels without <remove> content.
    """
    lines = [f"{len(summaries)} feature levels in {source_label}:", ""]
    if not summaries:
        lines.append("")
        return "\n".join(lines)

    name_width = max(len(s.name) for s in summaries)
    api_width = max(len(s.api) for s in summaries)
    for s in summaries:
        enum_col = f"+{s.added_enum_count} enums"
        cmd_col = f"+{s.added_command_count} cmds"
        row = (
            f"  {s.name.ljust(name_width)}  {s.api.ljust(api_width)}  "
            f"{str(s.version):<5}  {enum_col:<11} {cmd_col:<10}"
        )
        if s.removed_enum_count or s.removed_command_count:
            row = (
                row.rstrip()
                + f"  removes {s.removed_enum_count} enums, {s.removed_command_count} cmds"
            )
        lines.append(row.rstrip())
    lines.append("")
    return "\n".join(lines)


def format_feature_detail(feature: FeatureBlock) -> str:
    lines = [f"{feature.name} ({feature.api} {feature.version})"]
    for label, blocks in (("Require", feature.requires), ("Remove", feature.removes)):
        for block in blocks:
            lines.append("")
            header = f"  {label} ({format_scope(block)})"
            if block.comment:
                header += f"  # {block.comment}"
            lines.append(header)
            lines.append(f"    Enums ({len(block.enums)}):")
            lines.extend(f"      {name}" for name in block.enums)
            lines.append(f"    Commands ({len(block.commands)}):")
            lines.extend(f"      {name}" for name in block.commands)
    lines.append("")
    return "\n".join(lines)


def run_discovery(config: DiscoveryConfig) -> None:
    """Execute the discovery command in config and print its report to stdout.

    Raises:
        SystemExit(1): When --info names a feature absent from the registry.
    """
    registry = build_registry(read_registry(config.gl_xml))
    source_label = config.gl_xml.name

    if config.command == "list-features":
        summaries = gather_feature_summaries(registry, config.api_filter)
        print(format_features_table(summaries, source_label), end="")

    elif config.command == "info":
        assert config.info_feature is not None
        feature = find_feature(registry, config.info_feature)
        if feature is None:
            print(
                f"Error: feature '{config.info_feature}' not found in {source_label}",
                file=sys.stderr,
            )
            raise SystemExit(1)
        print(format_feature_detail(feature), end="")


# ===--- Rust emission ---=== #


def escape_identifier(name: str, keywords: frozenset[str] = RUST_KEYWORDS) -> str:
    """Rename an identifier that collides with a keyword of the target language."""
    if name not in keywords:
        return name
    if name in RUST_NON_RAW_KEYWORDS:
        return f"{name}_"
    return f"r#{name}"


def enum_rust_type(enum_def: EnumDef) -> str:
    if enum_def.is_bitmask:
        return "GLbitfield"
    if enum_def.value == U64_MAX_LITERAL:
        return "u64"
    return "GLenum"


def rust_fn_pointer_type(cmd: CommandDef) -> str:
    param_types = ", ".join(render_rust_type(p.type_ref) for p in cmd.params)
    return f'extern "system" fn({param_types}){rust_return_suffix(cmd)}'


def rust_return_suffix(cmd: CommandDef) -> str:
    if cmd.return_type is None:
        return ""
    return f" -> {render_rust_type(cmd.return_type)}"


def wrapper_name(command_name: str) -> str:
    return escape_identifier(command_name.removeprefix("gl"))


def trace_placeholder(param: Param) -> str:
    if param.type_ref == NamedType("GLenum"):
        return "{:#X}"
    if is_pointer(param.type_ref):
        return "{:p}"
    return "{:?}"


def trace_argument(param: Param) -> str:
    name = escape_identifier(param.name)
    if (
        isinstance(param.type_ref, NamedType)
        and param.type_ref.name in DEBUG_CALLBACK_TYPES
    ):
        return f"transmute::<_, Option<fn()>>({name})"
    return name


def check_type_closure(
    resolved: ResolvedRegistry,
    known_types: frozenset[str] = PREAMBLE_TYPE_NAMES,
) -> None:
    """Ensure every type a surviving command uses is declared by the preamble.

    Raises:
        EmitError: Listing each dangling type name and one command using it.
    """
    dangling: dict[str, str] = {}
    for cmd in resolved.commands:
        refs = [p.type_ref for p in cmd.params]
        if cmd.return_type is not None:
            refs.append(cmd.return_type)
        for ref in refs:
            name = base_type_name(ref)
            if name != "void" and name not in known_types:
                dangling.setdefault(name, cmd.name)
    if dangling:
        details = ", ".join(f"{name} (in {cmd})" for name, cmd in sorted(dangling.items()))
        raise EmitError(f"Commands reference types missing from the preamble: {details}")


def generate_prelude() -> list[str]:
    return [
        "#![allow(bad_style)]",
        "#![allow(clippy::too_many_arguments)]",
        "#![allow(clippy::missing_safety_doc)]",
        "#![allow(clippy::upper_case_acronyms)]",
        "",
        '#[cfg(not(feature = "std"))]',
        "use core::{",
        "    ffi::{c_void, CStr},",
        "    fmt::Display,",
        "    mem::transmute,",
        "};",
        '#[cfg(feature = "std")]',
        "use std::{ffi::CStr, fmt::Display, mem::transmute, os::raw::c_void};",
        "",
        '#[cfg(all(feature = "tracing", feature = "trace-calls"))]',
        "use tracing::trace;",
        "",
    ]


def generate_load_error() -> list[str]:
    return [
        "pub type Result<T, E = LoadError> = core::result::Result<T, E>;",
        "",
        "/// A command could not be resolved: `pointer` is the raw value the loader returned.",
        "#[derive(Debug)]",
        "pub struct LoadError {",
        "    pub name: &'static str,",
        "    pub pointer: usize,",
        "}",
        "",
        '#[cfg(feature = "std")]',
        "impl std::error::Error for LoadError {}",
        "",
        "impl Display for LoadError {",
        "    fn fmt(&self, f: &mut core::fmt::Formatter<'_>) -> core::fmt::Result {",
        "        write!(",
        "            f,",
        '            "Failed to load function \\"{}\\", expected a valid pointer instead got {:#x}",',
        "            self.name, self.pointer",
        "        )",
        "    }",
        "}",
        "",
    ]


def generate_types_module() -> list[str]:
    lines = ["pub use types::*;", "pub mod types {"]
    for line in RUST_TYPE_PREAMBLE.splitlines():
        lines.append(f"    {line}" if line else "")
    lines.append("}")
    lines.append("")
    return lines


def generate_enums(enums: Iterable[EnumDef]) -> list[str]:
    lines = ["pub use enums::*;", "pub mod enums {", "    use super::*;", ""]
    for enum_def in enums:
        lines.append(
            f"    pub const {enum_def.name}: {enum_rust_type(enum_def)} = {enum_def.value};"
        )
    lines.append("}")
    lines.append("")
    return lines


def generate_command_table(commands: Iterable[CommandDef]) -> list[str]:
    lines = ["pub struct Gl {"]
    for cmd in commands:
        lines.append(f"    {cmd.name}: {rust_fn_pointer_type(cmd)},")
    lines.append("}")
    lines.append("")
    return lines


def generate_loader(commands: Iterable[CommandDef]) -> list[str]:
    """Emit Gl::load, which resolves every command by its exact symbol name.

    A returned pointer equal to usize::MAX or below
    LOADER_RESERVED_ADDRESS_LIMIT becomes LoadError { name, pointer }.
    """
    lines = [
        "    pub unsafe fn load<F>(mut loader_function: F) -> Result<Self>",
        "    where",
        "        F: FnMut(&CStr) -> *const c_void,",
        "    {",
        "        let mut load_pointer = |name: &'static [u8]| -> Result<*const c_void> {",
        "            let pointer = loader_function(CStr::from_bytes_with_nul_unchecked(name));",
        "            let pointer_usize = pointer as usize;",
        "",
        f"            if pointer_usize == usize::MAX || pointer_usize < {LOADER_RESERVED_ADDRESS_LIMIT} {{",
        "                Err(LoadError {",
        "                    name: core::str::from_utf8_unchecked(&name[..name.len() - 1]),",
        "                    pointer: pointer_usize,",
        "                })",
        "            } else {",
        "                Ok(pointer)",
        "            }",
        "        };",
        "",
        "        Ok(Self {",
    ]
    for cmd in commands:
        lines.append(
            f"            {cmd.name}: transmute::<*const c_void, {rust_fn_pointer_type(cmd)}>("
            f'load_pointer(b"{cmd.name}\\0")?),'
        )
    lines.append("        })")
    lines.append("    }")
    lines.append("")
    return lines


def generate_wrapper_fn(cmd: CommandDef) -> list[str]:
    params = ", ".join(
        f"{escape_identifier(p.name)}: {render_rust_type(p.type_ref)}"
        for p in cmd.params
    )
    call_args = ", ".join(escape_identifier(p.name) for p in cmd.params)
    placeholders = ", ".join(trace_placeholder(p) for p in cmd.params)
    trace_args = "".join(f", {trace_argument(p)}" for p in cmd.params)
    receiver = f"&self, {params}" if params else "&self"
    return [
        f"    pub unsafe fn {wrapper_name(cmd.name)}({receiver}){rust_return_suffix(cmd)} {{",
        '        #[cfg(all(debug_assertions, feature = "tracing", feature = "trace-calls"))]',
        f'        trace!("Calling {cmd.name}({placeholders})"{trace_args});',
        f"        (self.{cmd.name})({call_args})",
        "    }",
        "",
    ]


def generate_impl(commands: tuple[CommandDef, ...]) -> list[str]:
    lines = ["impl Gl {"]
    lines.extend(generate_loader(commands))
    for cmd in commands:
        lines.extend(generate_wrapper_fn(cmd))
    if lines[-1] == "":
        lines.pop()
    lines.append("}")
    return lines


# ===--- Bindings writer ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Shared generation metadata embedded in the output header.

    Attributes:
        source_label: Registry file name, e.g. "gl.xml".
        target: Target the bindings were resolved for.
    """

    source_label: str
    target: Target


@dataclass(frozen=True)
class SourceSpec:
    """Complete input for the generated Rust file.

    Attributes:
        filename: Output filename including the .rs extension.
        content_lines: Generated source lines (without the header). Each string
            is one line without a trailing newline.
    """

    filename: str
    content_lines: tuple[str, ...]


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated file.

    Attributes:
        filename: Filename written, e.g. "gl.rs".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written UTF-8 content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


_HEADER_BORDER: str = "// x-------------------------------------------x //"


def format_file_header(config: WriteConfig) -> list[str]:
    """Return the comment block at the top of the generated file.

    Output format:
        // x-------------------------------------------x //
        // | OpenGL bindings for Rust
        // | Generated by gl-bindings-gen
        // | Source: gl.xml
        // | Target: gl 4.6 core
        // |
        // | DO NOT MANUALLY EDIT THIS FILE.
        // | Editing it can lead to safety bugs and memory corruption.
        // x-------------------------------------------x //

    Raises:
        ValueError: If config.source_label is empty.
    """
    if not config.source_label:
        raise ValueError("source_label must not be empty")
    return [
        _HEADER_BORDER,
        "// | OpenGL bindings for Rust",
        "// | Generated by gl-bindings-gen",
        f"// | Source: {config.source_label}",
        f"// | Target: {config.target}",
        "// |",
        "// | DO NOT MANUALLY EDIT THIS FILE.",
        "// | Editing it can lead to safety bugs and memory corruption.",
        _HEADER_BORDER,
    ]


def build_source_spec(resolved: ResolvedRegistry, filename: str) -> SourceSpec:
    """Render every section of the Rust bindings for a resolved registry.

    Raises:
        EmitError: Propagated from check_type_closure.
        ValueError: If filename does not end with ".rs".
    """
    if not filename.endswith(".rs"):
        raise ValueError(f"filename must end with '.rs', got {filename!r}")
    check_type_closure(resolved)

    lines: list[str] = []
    lines.extend(generate_prelude())
    lines.extend(generate_load_error())
    lines.extend(generate_types_module())
    lines.extend(generate_enums(resolved.enums))
    lines.extend(generate_command_table(resolved.commands))
    lines.extend(generate_impl(resolved.commands))
    return SourceSpec(filename=filename, content_lines=tuple(lines))


def assemble_source(config: WriteConfig, spec: SourceSpec) -> str:
    parts = list(format_file_header(config))
    if spec.content_lines:
        parts.append("")
        parts.extend(spec.content_lines)
    return "\n".join(parts) + "\n"


def generate_bindings(resolved: ResolvedRegistry, config: WriteConfig) -> str:
    return assemble_source(config, build_source_spec(resolved, "gl.rs"))


def write_bindings(
    output_path: Path, config: WriteConfig, spec: SourceSpec
) -> FileWriteResult:
    """Write the generated file, creating missing parent directories.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    content = assemble_source(config, spec)
    output_path.write_text(content, encoding="utf-8")
    resolved = output_path.resolve()
    return FileWriteResult(
        filename=output_path.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(resolved.read_bytes()),
    )


def run_rustfmt(path: Path) -> bool:
    """Format the written file in place; a missing or failing rustfmt is not fatal."""
    try:
        subprocess.run(
            ["rustfmt", "--edition", "2021", str(path)],
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        print("  rustfmt: not found on PATH, output left unformatted")
        return False
    except subprocess.CalledProcessError as err:
        print(f"  rustfmt: failed ({err.stderr.strip() or err.returncode})")
        return False
    print("  rustfmt: formatted")
    return True


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationCounts:
    """Per-category symbol counts of the resolved registry.

    Invariant: bitmask_constants + u64_constants + enumerant_constants == constants.
    """

    features: int
    constants: int
    bitmask_constants: int
    u64_constants: int
    enumerant_constants: int
    commands: int


@dataclass(frozen=True)
class GenerationSummary:
    target_label: str
    source_label: str
    output_path: str
    feature_range: str
    counts: GenerationCounts
    file: FileWriteResult
    rustfmt: bool | None


def build_generation_counts(resolved: ResolvedRegistry) -> GenerationCounts:
    types = [enum_rust_type(e) for e in resolved.enums]
    counts = GenerationCounts(
        features=len(resolved.features),
        constants=len(types),
        bitmask_constants=types.count("GLbitfield"),
        u64_constants=types.count("u64"),
        enumerant_constants=types.count("GLenum"),
        commands=len(resolved.commands),
    )
    assert (
        counts.bitmask_constants + counts.u64_constants + counts.enumerant_constants
        == counts.constants
    ), "GenerationCounts invariant violated"
    return counts


def build_generation_summary(
    write_config: WriteConfig,
    resolved: ResolvedRegistry,
    write_result: FileWriteResult,
    rustfmt: bool | None = None,
) -> GenerationSummary:
    if resolved.features:
        feature_range = f"{resolved.features[0]} .. {resolved.features[-1]}"
    else:
        feature_range = "none"
    return GenerationSummary(
        target_label=str(write_config.target),
        source_label=write_config.source_label,
        output_path=str(write_result.path),
        feature_range=feature_range,
        counts=build_generation_counts(resolved),
        file=write_result,
        rustfmt=rustfmt,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the post-generation console report.

    Returns a string with exactly one trailing newline.
    """
    counts = summary.counts
    lines = [f"OpenGL {summary.target_label} bindings generated:", ""]
    lines.append(f"  Target:     {summary.target_label}")
    lines.append(f"  Source:     {summary.source_label}")
    lines.append(f"  Output:     {summary.output_path}")
    lines.append("")
    lines.append(f"  Features folded: {counts.features} ({summary.feature_range})")
    lines.append("")
    lines.append("  Symbols generated:")
    constants_row = f"    {'Constants:':<11}{counts.constants:>6}"
    if counts.bitmask_constants or counts.u64_constants:
        constants_row += (
            f"  ({counts.enumerant_constants} GLenum + "
            f"{counts.bitmask_constants} GLbitfield + {counts.u64_constants} u64)"
        )
    lines.append(constants_row)
    lines.append(f"    {'Commands:':<11}{counts.commands:>6}")
    lines.append("")
    lines.append("  File written:")
    lines.append(
        f"    {summary.file.filename:<28} {summary.file.line_count:>6,} lines"
    )
    if summary.rustfmt is not None:
        lines.append("")
        lines.append(f"  rustfmt:    {'formatted' if summary.rustfmt else 'failed'}")
    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Pipeline ---=== #


def build_write_config(config: GenerateConfig) -> WriteConfig:
    return WriteConfig(
        source_label=config.gl_xml.name,
        target=Target(config.api, config.version, config.profile),
    )


def run_generate(config: GenerateConfig) -> FileWriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Stages: parse -> build registry -> resolve target -> emit -> write ->
    optional rustfmt -> summary.

    Raises:
        OSError: Registry file not readable or filesystem write failure.
        ET.ParseError: Malformed gl.xml.
        RegistryError: Schema drift or unresolved references in gl.xml.
        EmitError: Resolved commands reference types the preamble lacks.
    """
    print(f"Parsing: {config.gl_xml}")
    root = read_registry(config.gl_xml)
    registry = build_registry(root)
    print(
        f"  Registry: {len(registry.enums)} enums, {len(registry.commands)} commands, "
        f"{len(registry.features)} features"
    )

    write_config = build_write_config(config)
    target = write_config.target
    print(f"  Target: {target}")

    resolved = resolve(registry, target)
    print(
        f"  Resolved: {len(resolved.features)} features folded -> "
        f"{len(resolved.enums)} enums, {len(resolved.commands)} commands"
    )
    if not resolved.features:
        print(f"  Warning: no feature levels match {target}; output is empty")

    spec = build_source_spec(resolved, config.output.name)
    result = write_bindings(config.output, write_config, spec)
    print(f"  Written: {result.filename}, {result.line_count} lines")

    formatted = run_rustfmt(result.path) if config.rustfmt else None

    summary = build_generation_summary(write_config, resolved, result, formatted)
    print_generation_summary(summary)
    return result


# ===--- Main generation ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        if isinstance(config, DiscoveryConfig):
            run_discovery(config)
        else:
            run_generate(config)
    except (OSError, ET.ParseError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except RegistryError as err:
        print(f"Registry error [{err.code}]: {err.message}")
        raise SystemExit(1) from err
    except EmitError as err:
        print(f"Emit error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
