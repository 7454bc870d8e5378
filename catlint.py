#!/usr/bin/env python3
"""
Catlint - TestCategory enforcement for C# test suites

High-level goals:
- Parse C# (via tree-sitter) into a small declaration-level syntax model
- Find public [TestClass] classes and their public [TestMethod] methods
- Report every test method that carries no [TestCategory] attribute
- Keep going when single files fail, and say which files failed

Markers are matched by the attribute's simple name as written in source.
No alias, namespace or inheritance resolution is performed.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from fnmatch import fnmatch
from typing import Any, Callable, Dict, Iterator, List, Literal, Optional, Set, Tuple, Union
import argparse
import json
import os
import re
import shlex
import sys

import tree_sitter_c_sharp as ts_csharp
import yaml
from tree_sitter import Language, Node, Parser


__version__ = "0.1.0"


# ============================================================
# ========================= ERRORS ===========================
# ============================================================

class CatlintError(Exception):
    """Base class for every error catlint raises on purpose."""


class DiscoveryError(CatlintError):
    """Raised when the project path handed to the checker does not exist."""


class ParseError(CatlintError):
    """Raised when one source file cannot be turned into a syntax tree."""


class AnalysisError(CatlintError):
    """Raised when a syntax tree is structurally inconsistent and cannot be walked."""


class ConfigError(CatlintError):
    """Raised for an explicitly requested config file that is missing or malformed."""


# ============================================================
# ====================== SYNTAX MODEL ========================
# ============================================================

@dataclass(frozen=True)
class AttributeRef:
    """
    One attribute inside an attribute list, e.g. the `TestCategory` of
    [TestCategory("Unit")]. `name` is the name exactly as written,
    so [Foo.TestMethod] has the name "Foo.TestMethod".
    """
    name: str
    line: int = 0


@dataclass(frozen=True)
class MethodDecl:
    name: Optional[str]
    modifiers: Tuple[str, ...] = ()
    attributes: Tuple[AttributeRef, ...] = ()
    line: int = 0

    @property
    def is_public(self) -> bool:
        return "public" in self.modifiers

    def has_attribute(self, name: str) -> bool:
        return _has_attribute(self.attributes, name)


@dataclass(frozen=True)
class OtherMember:
    """Any member catlint does not inspect (fields, properties, ctors, enums...)."""
    kind: str
    line: int = 0


@dataclass(frozen=True)
class TypeDecl:
    """
    class / struct / interface / record declarations.
    Only `kind == "class"` can ever qualify as a test class, but every
    type is kept so nested classes inside structs are still reachable.
    """
    kind: Literal["class", "struct", "interface", "record"]
    name: Optional[str]
    modifiers: Tuple[str, ...] = ()
    attributes: Tuple[AttributeRef, ...] = ()
    members: Tuple["Declaration", ...] = ()
    line: int = 0

    @property
    def is_public(self) -> bool:
        return "public" in self.modifiers

    def has_attribute(self, name: str) -> bool:
        return _has_attribute(self.attributes, name)


@dataclass(frozen=True)
class NamespaceDecl:
    name: str
    members: Tuple["Declaration", ...] = ()
    file_scoped: bool = False
    line: int = 0


Declaration = Union[NamespaceDecl, TypeDecl, MethodDecl, OtherMember]


@dataclass(frozen=True)
class SyntaxTree:
    """
    Declaration-level view of one source file.
    Produced once per file by the parser, read-only afterwards.
    """
    path: str
    declarations: Tuple[Declaration, ...] = ()
    has_syntax_errors: bool = False


def _has_attribute(attributes: Tuple[AttributeRef, ...], name: str) -> bool:
    return any(attr.name == name for attr in attributes)


# ============================================================
# ===================== ANALYSIS MODEL =======================
# ============================================================

@dataclass(frozen=True)
class MarkerNames:
    test_class: str = "TestClass"
    test_method: str = "TestMethod"
    test_category: str = "TestCategory"


DEFAULT_MARKERS = MarkerNames()


@dataclass(frozen=True)
class ClassCandidate:
    name: str
    namespace: str
    members: Tuple[Declaration, ...] = ()
    line: int = 0


@dataclass(frozen=True)
class MethodCandidate:
    name: str
    has_category_marker: bool
    line: int = 0


@dataclass(frozen=True)
class Finding:
    """A public test method without a category marker."""
    qualified_name: str  # namespace.ClassName.MethodName
    path: str = ""
    line: int = 0

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(frozen=True)
class FileError:
    path: str
    kind: Literal["parse", "analysis"]
    message: str


@dataclass(frozen=True)
class FileResult:
    """
    Outcome of processing one file: either findings, or exactly one error.
    A failed file never carries findings.
    """
    path: str
    namespace: str = ""
    findings: Tuple[Finding, ...] = ()
    error: Optional[FileError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AnalysisReport:
    project_path: str
    files_analyzed: int = 0
    findings: Tuple[Finding, ...] = ()
    errors: Tuple[FileError, ...] = ()

    def qualified_names(self) -> List[str]:
        return [finding.qualified_name for finding in self.findings]

    def error_pairs(self) -> List[Tuple[str, str]]:
        return [(error.path, error.message) for error in self.errors]

    @property
    def is_clean(self) -> bool:
        return not self.findings and not self.errors


# ============================================================
# ================== COMPLIANCE ANALYZER =====================
# ============================================================

def _iter_declarations(declarations: Tuple[Declaration, ...]) -> Iterator[Declaration]:
    """Pre-order walk: a container is yielded before anything nested in it."""
    for decl in declarations:
        if isinstance(decl, NamespaceDecl):
            yield decl
            yield from _iter_declarations(decl.members)
        elif isinstance(decl, TypeDecl):
            yield decl
            yield from _iter_declarations(decl.members)
        elif isinstance(decl, (MethodDecl, OtherMember)):
            yield decl
        else:
            raise AnalysisError(f"unexpected declaration node {type(decl).__name__}")


def namespace_context(tree: SyntaxTree, file_scoped_namespaces: bool = False) -> str:
    """
    Name of the first namespace declared in the file, or "" if none.
    Later namespace blocks in the same file are not considered.
    File-scoped `namespace X;` declarations only count when
    `file_scoped_namespaces` is set.
    """
    for decl in _iter_declarations(tree.declarations):
        if isinstance(decl, NamespaceDecl):
            if decl.file_scoped and not file_scoped_namespaces:
                continue
            return decl.name
    return ""


def iter_type_declarations(tree: SyntaxTree) -> Iterator[TypeDecl]:
    for decl in _iter_declarations(tree.declarations):
        if isinstance(decl, TypeDecl):
            yield decl


def class_candidates(
    tree: SyntaxTree,
    markers: MarkerNames = DEFAULT_MARKERS,
    namespace: Optional[str] = None,
) -> List[ClassCandidate]:
    if namespace is None:
        namespace = namespace_context(tree)
    candidates: List[ClassCandidate] = []
    for type_decl in iter_type_declarations(tree):
        if type_decl.kind != "class":
            continue
        if not type_decl.is_public or not type_decl.has_attribute(markers.test_class):
            continue
        if not type_decl.name:
            raise AnalysisError(f"test class at line {type_decl.line} has no name")
        candidates.append(
            ClassCandidate(
                name=type_decl.name,
                namespace=namespace,
                members=type_decl.members,
                line=type_decl.line,
            )
        )
    return candidates


def method_candidates(
    candidate: ClassCandidate,
    markers: MarkerNames = DEFAULT_MARKERS,
) -> List[MethodCandidate]:
    """Directly declared public test methods, in declaration order."""
    methods: List[MethodCandidate] = []
    for member in candidate.members:
        if not isinstance(member, MethodDecl):
            continue
        if not member.is_public or not member.has_attribute(markers.test_method):
            continue
        if not member.name:
            raise AnalysisError(
                f"test method at line {member.line} in class '{candidate.name}' has no name"
            )
        methods.append(
            MethodCandidate(
                name=member.name,
                has_category_marker=member.has_attribute(markers.test_category),
                line=member.line,
            )
        )
    return methods


def analyze(
    tree: SyntaxTree,
    markers: MarkerNames = DEFAULT_MARKERS,
    file_scoped_namespaces: bool = False,
) -> Tuple[str, List[Finding]]:
    """
    Return (namespace, findings) for one syntax tree.

    Findings are `namespace.Class.Method` for every public [TestMethod]
    of a public [TestClass] that lacks [TestCategory]. The namespace part
    is joined even when empty, giving a leading ".".
    """
    try:
        namespace = namespace_context(tree, file_scoped_namespaces)
        candidates = class_candidates(tree, markers, namespace)
    except RecursionError as exc:
        raise AnalysisError("declarations are nested too deeply to analyze") from exc

    findings: List[Finding] = []
    for candidate in candidates:
        for method in method_candidates(candidate, markers):
            if method.has_category_marker:
                continue
            findings.append(
                Finding(
                    qualified_name=f"{namespace}.{candidate.name}.{method.name}",
                    path=tree.path,
                    line=method.line,
                )
            )
    return namespace, findings


# ============================================================
# ===================== C# SYNTAX PARSER =====================
# ============================================================

_TYPE_NODE_KINDS: Dict[str, str] = {
    "class_declaration": "class",
    "struct_declaration": "struct",
    "interface_declaration": "interface",
    "record_declaration": "record",
}

_NAMESPACE_NODE_KINDS = ("namespace_declaration", "file_scoped_namespace_declaration")

_CSHARP_LANGUAGE: Optional[Language] = None


def _csharp_language() -> Language:
    global _CSHARP_LANGUAGE
    if _CSHARP_LANGUAGE is None:
        _CSHARP_LANGUAGE = Language(ts_csharp.language())
    return _CSHARP_LANGUAGE


class CSharpSyntaxParser:
    """
    Turns C# source text into a SyntaxTree.

    tree-sitter always produces a tree, marking broken regions with ERROR
    nodes. Unless `allow_partial` is set, any such region makes the file
    a ParseError instead of a silently incomplete result.
    """

    def __init__(self, allow_partial: bool = False) -> None:
        self.allow_partial = allow_partial
        self._parser = Parser(_csharp_language())

    def parse_file(self, path: str) -> SyntaxTree:
        try:
            with open(path, "rb") as handle:
                raw = handle.read()
        except OSError as exc:
            raise ParseError(f"could not read file: {exc.strerror or exc}") from exc
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError(f"file is not valid UTF-8: {exc.reason} at byte {exc.start}") from exc
        return self.parse(text, path)

    def parse(self, text: str, path: str = "<string>") -> SyntaxTree:
        source = text.encode("utf-8")
        concrete = self._parser.parse(source)
        root = concrete.root_node
        if root.has_error and not self.allow_partial:
            line = _first_error_line(root)
            raise ParseError(f"syntax error near line {line}")
        try:
            declarations = _translate_children(root, source, set())
        except RecursionError as exc:
            raise ParseError("declarations are nested too deeply to parse") from exc
        return SyntaxTree(
            path=path,
            declarations=tuple(declarations),
            has_syntax_errors=root.has_error,
        )


def _node_text(source: bytes, node: Node) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def _node_line(node: Node) -> int:
    # tree-sitter rows are 0-indexed
    return node.start_point[0] + 1


def _compact(text: str) -> str:
    return "".join(text.split())


def _first_error_line(root: Node) -> int:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return _node_line(node)
        stack.extend(reversed(node.children))
    return _node_line(root)


def _name_of(node: Node, source: bytes) -> Optional[str]:
    name_node = node.child_by_field_name("name")
    if name_node is None or name_node.is_missing:
        return None
    return _compact(_node_text(source, name_node)) or None


def _modifiers_of(node: Node, source: bytes) -> Tuple[str, ...]:
    return tuple(
        _node_text(source, child).strip()
        for child in node.children
        if child.type == "modifier"
    )


def _attributes_of(node: Node, source: bytes) -> Tuple[AttributeRef, ...]:
    attributes: List[AttributeRef] = []
    for attr_list in node.children:
        if attr_list.type != "attribute_list":
            continue
        for attr in attr_list.named_children:
            if attr.type != "attribute":
                continue
            name = _name_of(attr, source)
            if name:
                attributes.append(AttributeRef(name=name, line=_node_line(attr)))
    return tuple(attributes)


def _translate_nodes(nodes: List[Node], source: bytes, symbols: Set[str]) -> List[Declaration]:
    declarations: List[Declaration] = []
    for child in nodes:
        if child.type == "comment":
            continue
        if child.type == "ERROR":
            # best-effort: keep whatever declarations survived inside the broken region
            declarations.extend(_translate_children(child, source, symbols))
            continue
        if child.type.startswith("preproc"):
            declarations.extend(_translate_directive(child, source, symbols))
            continue
        declarations.append(_translate_node(child, source, symbols))
    return declarations


def _translate_children(node: Node, source: bytes, symbols: Set[str]) -> List[Declaration]:
    return _translate_nodes(node.named_children, source, symbols)


def _translate_file_scoped_members(node: Node, source: bytes, symbols: Set[str]) -> List[Declaration]:
    # Depending on the grammar release, declarations after `namespace X;` are
    # either children of this node or its siblings under compilation_unit.
    name_node = node.child_by_field_name("name")
    children = [
        child
        for child in node.named_children
        if name_node is None or child.start_byte != name_node.start_byte
    ]
    return _translate_nodes(children, source, symbols)


def _translate_node(node: Node, source: bytes, symbols: Set[str]) -> Declaration:
    if node.type in _NAMESPACE_NODE_KINDS:
        body = node.child_by_field_name("body")
        if body is not None:
            members = _translate_children(body, source, symbols)
        else:
            members = _translate_file_scoped_members(node, source, symbols)
        return NamespaceDecl(
            name=_name_of(node, source) or "",
            members=tuple(members),
            file_scoped=node.type == "file_scoped_namespace_declaration",
            line=_node_line(node),
        )

    if node.type in _TYPE_NODE_KINDS:
        body = node.child_by_field_name("body")
        members = _translate_children(body, source, symbols) if body is not None else []
        return TypeDecl(
            kind=_TYPE_NODE_KINDS[node.type],  # type: ignore[arg-type]
            name=_name_of(node, source),
            modifiers=_modifiers_of(node, source),
            attributes=_attributes_of(node, source),
            members=tuple(members),
            line=_node_line(node),
        )

    if node.type == "method_declaration":
        return MethodDecl(
            name=_name_of(node, source),
            modifiers=_modifiers_of(node, source),
            attributes=_attributes_of(node, source),
            line=_node_line(node),
        )

    return OtherMember(kind=node.type, line=_node_line(node))


# ============================================================
# ================= PREPROCESSOR DIRECTIVES ==================
# ============================================================

_DEFINE_PATTERN = re.compile(r"#\s*(define|undef)\s+([A-Za-z_][A-Za-z0-9_]*)")
_PREPROC_TOKEN_PATTERN = re.compile(r"\s*(\|\||&&|==|!=|!|\(|\)|[A-Za-z_][A-Za-z0-9_]*)")


def _translate_directive(node: Node, source: bytes, symbols: Set[str]) -> List[Declaration]:
    """
    Conditional blocks contribute only their active branch. Symbols are
    those #define'd earlier in the same file; everything else is undefined.
    """
    if node.type.startswith(("preproc_if", "preproc_elif")):
        condition = node.child_by_field_name("condition")
        if condition is None:
            raise ParseError(f"preprocessor condition missing near line {_node_line(node)}")
        alternative = node.child_by_field_name("alternative")
        body = _directive_body(node, (condition, alternative))
        if _eval_preproc_condition(_node_text(source, condition), symbols, _node_line(node)):
            return _translate_nodes(body, source, symbols)
        if alternative is None:
            alternative = next(
                (c for c in node.named_children if c.type.startswith(("preproc_elif", "preproc_else"))),
                None,
            )
        if alternative is not None:
            return _translate_directive(alternative, source, symbols)
        return []

    if node.type.startswith("preproc_else"):
        return _translate_nodes(_directive_body(node, ()), source, symbols)

    if node.type in ("preproc_define", "preproc_undef"):
        match = _DEFINE_PATTERN.match(_node_text(source, node).strip())
        if match:
            if match.group(1) == "define":
                symbols.add(match.group(2))
            else:
                symbols.discard(match.group(2))
        return []

    # #region, #pragma, #nullable...: keep any declarations the grammar nests inside
    return [
        decl
        for decl in _translate_children(node, source, symbols)
        if not isinstance(decl, OtherMember)
    ]


def _directive_body(node: Node, exclude: Tuple[Optional[Node], ...]) -> List[Node]:
    skip = {(n.type, n.start_byte) for n in exclude if n is not None}
    return [
        child
        for child in node.named_children
        if (child.type, child.start_byte) not in skip
        and not child.type.startswith(("preproc_elif", "preproc_else"))
    ]


def _eval_preproc_condition(text: str, symbols: Set[str], line: int) -> bool:
    """
    Evaluate an #if / #elif condition: identifiers, true/false,
    ! && || == != and parentheses, with C#'s precedence.
    """
    tokens: List[str] = []
    pos = 0
    text = text.strip()
    while pos < len(text):
        match = _PREPROC_TOKEN_PATTERN.match(text, pos)
        if match is None:
            raise ParseError(f"invalid preprocessor condition '{text}' near line {line}")
        tokens.append(match.group(1))
        pos = match.end()

    index = 0

    def peek() -> Optional[str]:
        return tokens[index] if index < len(tokens) else None

    def take() -> str:
        nonlocal index
        token = peek()
        if token is None:
            raise ParseError(f"incomplete preprocessor condition '{text}' near line {line}")
        index += 1
        return token

    def parse_or() -> bool:
        value = parse_and()
        while peek() == "||":
            take()
            rhs = parse_and()
            value = value or rhs
        return value

    def parse_and() -> bool:
        value = parse_equality()
        while peek() == "&&":
            take()
            rhs = parse_equality()
            value = value and rhs
        return value

    def parse_equality() -> bool:
        value = parse_unary()
        while peek() in ("==", "!="):
            op = take()
            rhs = parse_unary()
            value = (value == rhs) if op == "==" else (value != rhs)
        return value

    def parse_unary() -> bool:
        if peek() == "!":
            take()
            return not parse_unary()
        token = take()
        if token == "(":
            value = parse_or()
            if take() != ")":
                raise ParseError(f"unbalanced parentheses in preprocessor condition near line {line}")
            return value
        if token == "true":
            return True
        if token == "false":
            return False
        if token in ("||", "&&", "==", "!=", ")"):
            raise ParseError(f"invalid preprocessor condition '{text}' near line {line}")
        return token in symbols

    result = parse_or()
    if peek() is not None:
        raise ParseError(f"invalid preprocessor condition '{text}' near line {line}")
    return result


# ============================================================
# ===================== CONFIGURATION ========================
# ============================================================

DEFAULT_CONFIG_NAME = ".catlint.yaml"


@dataclass(frozen=True)
class CheckerConfig:
    markers: MarkerNames = DEFAULT_MARKERS
    extensions: Tuple[str, ...] = (".cs",)
    exclude: Tuple[str, ...] = ()
    allow_partial_parse: bool = False
    file_scoped_namespaces: bool = False


def _warn(message: str) -> None:
    sys.stderr.write(f"[catlint] {message}\n")


def load_config(
    path: Optional[str] = None,
    project_dir: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> CheckerConfig:
    """
    Build a CheckerConfig.

    - `path` given: that YAML file must exist and be a mapping.
    - otherwise `.catlint.yaml` in `project_dir` is used when present.
    - CATLINT_EXCLUDE appends extra exclude patterns (shell-split).
    Unknown keys and mistyped values are reported and ignored.
    """
    env = os.environ if environ is None else environ

    raw: Dict[str, Any] = {}
    origin = path
    if path is None and project_dir:
        candidate = os.path.join(project_dir, DEFAULT_CONFIG_NAME)
        if os.path.isfile(candidate):
            origin = candidate

    if origin is not None:
        raw = _read_config_mapping(origin)

    config = _config_from_mapping(raw, origin or "<defaults>")

    extra = env.get("CATLINT_EXCLUDE")
    if extra:
        config = replace(config, exclude=config.exclude + tuple(shlex.split(extra)))
    return config


def _read_config_mapping(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            doc = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc

    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return doc


def _to_str_tuple(value: Any, key: str, origin: str) -> Optional[Tuple[str, ...]]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    _warn(f"Ignoring '{key}' in {origin}: expected a string or list of strings.")
    return None


def _config_from_mapping(raw: Dict[str, Any], origin: str) -> CheckerConfig:
    config = CheckerConfig()

    for key in raw:
        if key not in (
            "markers", "extensions", "exclude", "allow_partial_parse", "file_scoped_namespaces",
        ):
            _warn(f"Ignoring unknown key '{key}' in {origin}.")

    markers_raw = raw.get("markers")
    if markers_raw is not None:
        if isinstance(markers_raw, dict):
            marker_values: Dict[str, str] = {}
            for name, value in markers_raw.items():
                if name not in ("test_class", "test_method", "test_category"):
                    _warn(f"Ignoring unknown marker '{name}' in {origin}.")
                elif not isinstance(value, str) or not value.strip():
                    _warn(f"Ignoring marker '{name}' in {origin}: expected a non-empty string.")
                else:
                    marker_values[name] = value.strip()
            config = replace(config, markers=replace(config.markers, **marker_values))
        else:
            _warn(f"Ignoring 'markers' in {origin}: expected a mapping.")

    if "extensions" in raw:
        extensions = _to_str_tuple(raw["extensions"], "extensions", origin)
        if extensions is not None:
            normalized = tuple(
                ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions
            )
            config = replace(config, extensions=normalized)

    if "exclude" in raw:
        exclude = _to_str_tuple(raw["exclude"], "exclude", origin)
        if exclude is not None:
            config = replace(config, exclude=exclude)

    for flag in ("allow_partial_parse", "file_scoped_namespaces"):
        if flag not in raw:
            continue
        value = raw[flag]
        if isinstance(value, bool):
            config = replace(config, **{flag: value})
        else:
            _warn(f"Ignoring '{flag}' in {origin}: expected true or false.")

    return config


# ============================================================
# ==================== SOURCE COLLECTION =====================
# ============================================================

def _is_excluded(rel_path: str, name: str, patterns: Tuple[str, ...]) -> bool:
    return any(fnmatch(rel_path, pat) or fnmatch(name, pat) for pat in patterns)


def collect_source_files(root: str, config: CheckerConfig = CheckerConfig()) -> List[str]:
    """
    All source files below `root`, recursively, deduplicated and sorted.
    A missing root yields an empty list.
    """
    if not os.path.isdir(root):
        return []

    found: Dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")

        dirnames[:] = sorted(
            d for d in dirnames
            if not _is_excluded(f"{rel_dir}/{d}" if rel_dir else d, d, config.exclude)
        )
        for filename in filenames:
            if os.path.splitext(filename)[1].lower() not in config.extensions:
                continue
            rel_file = f"{rel_dir}/{filename}" if rel_dir else filename
            if _is_excluded(rel_file, filename, config.exclude):
                continue
            full = os.path.join(dirpath, filename)
            found.setdefault(os.path.normcase(os.path.abspath(full)), full)

    return [found[key] for key in sorted(found)]


# ============================================================
# ================ PROJECT ANALYSIS PIPELINE =================
# ============================================================

def process_source_file(
    path: str,
    parser: CSharpSyntaxParser,
    markers: MarkerNames = DEFAULT_MARKERS,
    file_scoped_namespaces: bool = False,
) -> FileResult:
    """Parse and analyze one file; failures come back as a FileResult, never raised."""
    try:
        tree = parser.parse_file(path)
    except ParseError as exc:
        return FileResult(path=path, error=FileError(path=path, kind="parse", message=str(exc)))

    try:
        namespace, findings = analyze(tree, markers, file_scoped_namespaces)
    except AnalysisError as exc:
        return FileResult(path=path, error=FileError(path=path, kind="analysis", message=str(exc)))

    return FileResult(path=path, namespace=namespace, findings=tuple(findings))


def aggregate_results(project_path: str, results: List[FileResult]) -> AnalysisReport:
    """Fold per-file results, in file order, into one report."""
    findings: Tuple[Finding, ...] = ()
    errors: Tuple[FileError, ...] = ()
    for result in results:
        findings = findings + result.findings
        if result.error is not None:
            errors = errors + (result.error,)
    return AnalysisReport(
        project_path=project_path,
        files_analyzed=len(results),
        findings=findings,
        errors=errors,
    )


def resolve_project_directory(project_path: str) -> str:
    """
    A project file resolves to the directory containing it, a directory
    to itself. Raises DiscoveryError when the path does not exist.
    """
    path = project_path.strip()
    if os.path.isdir(path):
        return path
    if os.path.isfile(path):
        return os.path.dirname(path) or "."
    raise DiscoveryError(f"Project file not found at '{path}'")


def run_analysis(
    project_path: str,
    config: Optional[CheckerConfig] = None,
    parser: Optional[CSharpSyntaxParser] = None,
    on_file: Optional[Callable[[FileResult], None]] = None,
) -> AnalysisReport:
    project_dir = resolve_project_directory(project_path)
    if config is None:
        config = load_config(project_dir=project_dir)
    if parser is None:
        parser = CSharpSyntaxParser(allow_partial=config.allow_partial_parse)

    results: List[FileResult] = []
    for source_file in collect_source_files(project_dir, config):
        result = process_source_file(
            source_file, parser, config.markers, config.file_scoped_namespaces
        )
        if on_file is not None:
            on_file(result)
        results.append(result)

    return aggregate_results(project_path, results)


# ============================================================
# ======================== REPORTING =========================
# ============================================================

def render_text_report(
    report: AnalysisReport,
    markers: MarkerNames = DEFAULT_MARKERS,
) -> str:
    lines = [f"Analyzing project: '{report.project_path}'", ""]
    if report.findings:
        lines.append(f"Methods Missing [{markers.test_category}] Attribute:")
        lines.extend(f"- {finding.qualified_name}" for finding in report.findings)
    else:
        lines.append(
            f"All {markers.test_method}s have the [{markers.test_category}] attribute."
        )
    for error in report.errors:
        lines.append(f"Error processing '{error.path}': {error.message}")
    return "\n".join(lines)


def report_to_json_obj(report: AnalysisReport) -> Dict[str, Any]:
    """
    Keep the field order explicit so the JSON layout stays stable.
    """
    return {
        "tool": "catlint",
        "version": __version__,
        "project": report.project_path,
        "files_analyzed": report.files_analyzed,
        "findings": [
            {"name": f.qualified_name, "file": f.path, "line": f.line}
            for f in report.findings
        ],
        "errors": [
            {"file": e.path, "kind": e.kind, "message": e.message}
            for e in report.errors
        ],
    }


def emit_report(
    report: AnalysisReport,
    fmt: Literal["text", "json"] = "text",
    out: Optional[str] = None,
    markers: MarkerNames = DEFAULT_MARKERS,
) -> None:
    if fmt == "json":
        text = json.dumps(report_to_json_obj(report), indent=2, sort_keys=False)
    else:
        text = render_text_report(report, markers)
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(text + "\n")
    else:
        print(text)


def _announce_findings(markers: MarkerNames) -> Callable[[FileResult], None]:
    def _on_file(result: FileResult) -> None:
        for finding in result.findings:
            qualified_class, _, method = finding.qualified_name.rpartition(".")
            sys.stderr.write(
                f"  - Method '{method}' in class '{qualified_class}' is missing "
                f"[{markers.test_category}] attribute.\n"
            )

    return _on_file


# ============================================================
# ============================ CLI ===========================
# ============================================================

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_USAGE = 2


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.
      catlint path/to/Tests.csproj
      catlint path/to/tests --format json --out report.json

    Exit codes: 0 clean, 1 findings or per-file errors, 2 usage/config/discovery error.
    """
    parser = argparse.ArgumentParser(
        prog="catlint",
        description="Report [TestMethod]s that carry no [TestCategory] attribute.",
    )
    parser.add_argument("project", help="Path to a .csproj file or a project directory.")
    parser.add_argument("--config", metavar="FILE", help=f"YAML config (default: {DEFAULT_CONFIG_NAME} in the project directory).")
    parser.add_argument("--format", choices=("text", "json"), default="text", help="Report format.")
    parser.add_argument("--out", metavar="FILE", help="Write the report to this file instead of stdout.")
    parser.add_argument("--verbose", action="store_true", help="Announce each finding on stderr as it is found.")
    parser.add_argument(
        "--allow-partial-parse",
        action="store_true",
        default=None,
        help="Analyze files with syntax errors on a best-effort basis instead of skipping them.",
    )
    args = parser.parse_args(argv)

    try:
        project_dir = resolve_project_directory(args.project)
        config = load_config(args.config, project_dir=project_dir)
    except DiscoveryError as exc:
        print(f"Error: {exc}")
        return EXIT_USAGE
    except ConfigError as exc:
        _warn(str(exc))
        return EXIT_USAGE

    if args.allow_partial_parse is not None:
        config = replace(config, allow_partial_parse=args.allow_partial_parse)

    on_file = _announce_findings(config.markers) if args.verbose else None
    report = run_analysis(args.project.strip(), config=config, on_file=on_file)

    emit_report(report, fmt=args.format, out=args.out, markers=config.markers)
    return EXIT_OK if report.is_clean else EXIT_FINDINGS


if __name__ == "__main__":
    sys.exit(main())
