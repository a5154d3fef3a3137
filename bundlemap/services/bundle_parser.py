"""
Locate per-module source text inside an emitted webpack bundle.

The bundle is parsed with tree-sitter's JavaScript grammar and walked until
the container holding the module functions is found. Supported layouts:

- webpack 5: a top-level IIFE without parameters or arguments whose first
  variable declaration holds the modules object/array;
- ``exports.modules = {...}`` (node target chunks);
- the bootstrap call ``(function (modules) {...})([...])``, with or without
  a leading ``!``;
- ``webpackJsonp([<chunk ids>], <modules>)`` async chunks (webpack < 4);
- ``(window.webpackJsonp = window.webpackJsonp || []).push([[<ids>], <modules>])``;
- web worker chunks ``self.callback([<ids>], <modules>)``.

Module ids come from object keys, or from array positions (offset by
``Array(<min id>).concat([...])`` when webpack optimizes sparse arrays).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import tree_sitter_javascript as tsjavascript
from tree_sitter import Language, Node, Parser

JAVASCRIPT_LANGUAGE = Language(tsjavascript.language())

# Older grammar releases call function expressions "function".
FUNCTION_EXPRESSION_TYPES = {"function_expression", "function"}
MEMBER_TYPES = {"member_expression", "subscript_expression"}
VARIABLE_DECLARATION_TYPES = {"variable_declaration", "lexical_declaration"}

Location = Tuple[int, int]


@dataclass
class ParsedBundle:
    src: str
    modules: Dict[str, str] = field(default_factory=dict)
    runtime_src: str = ""


def _unwrap(node: Optional[Node]) -> Optional[Node]:
    while node is not None and node.type == "parenthesized_expression":
        inner = _named(node)
        if not inner:
            break
        node = inner[0]
    return node


def _named(node: Node) -> List[Node]:
    return [child for child in node.named_children if child.type != "comment"]


def _text(node: Node) -> str:
    return node.text.decode("utf-8")


def _array_elements(node: Node) -> List[Optional[Node]]:
    """Array elements by position; holes (``[, a]``) are ``None``."""
    elements: List[Optional[Node]] = []
    pending_hole = True
    for child in node.children:
        if child.type in ("[", "]", "comment"):
            continue
        if child.type == ",":
            if pending_hole:
                elements.append(None)
            pending_hole = True
            continue
        elements.append(child)
        pending_hole = False
    return elements


def _call_arguments(node: Node) -> List[Node]:
    args = node.child_by_field_name("arguments")
    if args is None or args.type != "arguments":
        return []
    return _named(args)


def _integer_value(node: Node) -> Optional[int]:
    if node.type != "number":
        return None
    try:
        value = int(_text(node), 0)
    except ValueError:
        return None
    return value if value >= 0 else None


def _string_value(node: Node) -> Optional[str]:
    if node.type != "string":
        return None
    raw = _text(node)
    return raw[1:-1] if len(raw) >= 2 else ""


def _is_function(node: Optional[Node]) -> bool:
    if node is None:
        return False
    if node.type == "arrow_function":
        return True
    return node.type in FUNCTION_EXPRESSION_TYPES and node.child_by_field_name("name") is None


def _is_module_id(node: Optional[Node]) -> bool:
    node = _unwrap(node)
    return node is not None and (_integer_value(node) is not None or node.type == "string")


def _is_module_wrapper(node: Optional[Node]) -> bool:
    node = _unwrap(node)
    if node is None:
        return False
    if _is_function(node) or _is_module_id(node):
        return True
    # DedupePlugin: [<module id>, ...args]
    if node.type == "array":
        elements = _array_elements(node)
        return len(elements) > 1 and _is_module_id(elements[0])
    return False


def _is_modules_hash(node: Node) -> bool:
    if node.type != "object":
        return False
    for prop in _named(node):
        if prop.type != "pair" or not _is_module_wrapper(prop.child_by_field_name("value")):
            return False
    return True


def _is_modules_array(node: Node) -> bool:
    return node.type == "array" and all(
        element is None or _is_module_wrapper(element) for element in _array_elements(node)
    )


def _optimized_array_parts(node: Node) -> Optional[Tuple[int, Node]]:
    """Match ``Array(<min id>).concat([...])`` and return (min id, array)."""
    if node.type != "call_expression":
        return None
    callee = node.child_by_field_name("function")
    if callee is None or callee.type != "member_expression":
        return None
    prop = callee.child_by_field_name("property")
    inner = _unwrap(callee.child_by_field_name("object"))
    if prop is None or _text(prop) != "concat" or inner is None or inner.type != "call_expression":
        return None
    inner_callee = inner.child_by_field_name("function")
    if inner_callee is None or inner_callee.type != "identifier" or _text(inner_callee) != "Array":
        return None
    inner_args = _call_arguments(inner)
    if len(inner_args) != 1 or _integer_value(inner_args[0]) is None:
        return None
    args = _call_arguments(node)
    if len(args) != 1 or not _is_modules_array(args[0]):
        return None
    return _integer_value(inner_args[0]), args[0]


def _is_simple_modules_list(node: Optional[Node]) -> bool:
    node = _unwrap(node)
    return node is not None and (_is_modules_hash(node) or _is_modules_array(node))


def _is_modules_list(node: Optional[Node]) -> bool:
    node = _unwrap(node)
    return node is not None and (
        _is_simple_modules_list(node) or _optimized_array_parts(node) is not None
    )


def _is_chunk_ids(node: Optional[Node]) -> bool:
    node = _unwrap(node)
    return node is not None and node.type == "array" and all(
        _is_module_id(element) for element in _array_elements(node)
    )


def _may_be_async_chunk_arguments(args: List[Optional[Node]]) -> bool:
    return len(args) >= 2 and _is_chunk_ids(args[0])


def _module_location(node: Node) -> Location:
    node = _unwrap(node)
    return node.start_byte, node.end_byte


def _object_key(key: Node) -> Optional[str]:
    integer = _integer_value(key)
    if integer is not None:
        return str(integer)
    string = _string_value(key)
    if string is not None:
        return string
    if key.type in ("property_identifier", "identifier"):
        return _text(key)
    return None


def get_modules_locations(node: Node) -> Dict[str, Location]:
    node = _unwrap(node)
    locations: Dict[str, Location] = {}

    if node.type == "object":
        for prop in _named(node):
            key = prop.child_by_field_name("key")
            value = prop.child_by_field_name("value")
            module_id = _object_key(key) if key is not None else None
            if module_id is not None and value is not None:
                locations[module_id] = _module_location(value)
        return locations

    min_id = 0
    array = node
    optimized = _optimized_array_parts(node)
    if optimized is not None:
        min_id, array = optimized
    if array.type == "array":
        for i, element in enumerate(_array_elements(array)):
            if element is not None:
                locations[str(i + min_id)] = _module_location(element)
    return locations


def _is_iife(statement: Node) -> Optional[Node]:
    """Return the call of a top-level ``(() => {...})()`` / ``!function(){}()``."""
    named = _named(statement)
    if not named:
        return None
    expr = _unwrap(named[0])
    if expr is not None and expr.type == "unary_expression":
        expr = _unwrap(expr.child_by_field_name("argument"))
    if expr is None or expr.type != "call_expression":
        return None
    return expr


def _has_no_parameters(fn: Node) -> bool:
    if fn.child_by_field_name("parameter") is not None:
        return False
    params = fn.child_by_field_name("parameters")
    return params is None or not _named(params)


def _webpack5_modules(statement: Node) -> Optional[Dict[str, Location]]:
    call = _is_iife(statement)
    if call is None:
        return None
    fn = _unwrap(call.child_by_field_name("function"))
    if not _is_function(fn) or _call_arguments(call) or not _has_no_parameters(fn):
        return None
    body = fn.child_by_field_name("body")
    if body is None or body.type != "statement_block":
        return None

    first_declaration = next(
        (child for child in _named(body) if child.type in VARIABLE_DECLARATION_TYPES),
        None,
    )
    if first_declaration is None:
        return None
    for declarator in _named(first_declaration):
        value = declarator.child_by_field_name("value")
        if value is not None and _is_modules_list(value):
            return get_modules_locations(value)
    return None


def _is_async_chunk_push(node: Node) -> bool:
    callee = node.child_by_field_name("function")
    if callee is None or callee.type != "member_expression":
        return False
    prop = callee.child_by_field_name("property")
    target = _unwrap(callee.child_by_field_name("object"))
    if prop is None or _text(prop) != "push" or target is None or target.type != "assignment_expression":
        return False
    args = _call_arguments(node)
    if len(args) != 1 or args[0].type != "array":
        return False
    elements = _array_elements(args[0])
    return _may_be_async_chunk_arguments(elements) and _is_modules_list(elements[1])


def _is_async_web_worker_chunk(node: Node) -> bool:
    callee = node.child_by_field_name("function")
    args = _call_arguments(node)
    return (
        callee is not None
        and callee.type in MEMBER_TYPES
        and len(args) == 2
        and _is_chunk_ids(args[0])
        and _is_modules_list(args[1])
    )


def _match_call(node: Node) -> Optional[Dict[str, Location]]:
    callee = _unwrap(node.child_by_field_name("function"))
    args = _call_arguments(node)

    # Entry chunk with the bootstrap: (function (modules) {...})(<modules>)
    if callee is not None and callee.type in FUNCTION_EXPRESSION_TYPES and _is_function(callee):
        if len(args) == 1 and _is_simple_modules_list(args[0]):
            return get_modules_locations(args[0])

    # webpackJsonp([<chunks>], <modules>, ...)
    if callee is not None and callee.type == "identifier":
        if _may_be_async_chunk_arguments(args) and _is_modules_list(args[1]):
            return get_modules_locations(args[1])

    if _is_async_chunk_push(node):
        return get_modules_locations(_array_elements(args[0])[1])

    if _is_async_web_worker_chunk(node):
        return get_modules_locations(args[1])

    return None


def _match_assignment(node: Node) -> Optional[Dict[str, Location]]:
    left = node.child_by_field_name("left")
    right = _unwrap(node.child_by_field_name("right"))
    if left is None or right is None or left.type != "member_expression":
        return None
    obj = left.child_by_field_name("object")
    prop = left.child_by_field_name("property")
    if (
        obj is not None
        and prop is not None
        and _text(obj) == "exports"
        and _text(prop) == "modules"
        and _is_modules_hash(right)
    ):
        return get_modules_locations(right)
    return None


def find_modules_locations(root: Node) -> Optional[Dict[str, Location]]:
    """
    Walk the syntax tree in source order and return the first modules container.

    The walk is iterative: minified bundles nest deeply enough to exhaust
    Python's recursion limit.
    """
    stack: List[Node] = [root]
    while stack:
        node = stack.pop()
        children: List[Node] = _named(node)

        if node.type == "expression_statement":
            if node.parent is not None and node.parent.type == "program":
                found = _webpack5_modules(node)
                if found is not None:
                    return found
        elif node.type == "call_expression":
            found = _match_call(node)
            if found is not None:
                return found
            # Plugins and `umd` output wrap the modules in extra calls, so
            # look inside the arguments but not the callee.
            children = _call_arguments(node)
        elif node.type == "assignment_expression":
            found = _match_assignment(node)
            if found is not None:
                return found

        stack.extend(reversed(children))
    return None


def _runtime_source(content: bytes, locations: Dict[str, Location]) -> bytes:
    parts: List[bytes] = []
    last = 0
    for start, end in sorted(locations.values()):
        if start < last:
            continue
        parts.append(content[last:start])
        last = end
    parts.append(content[last:])
    return b"".join(parts)


def parse_bundle_source(source: Union[str, bytes]) -> ParsedBundle:
    content = source.encode("utf-8") if isinstance(source, str) else source
    tree = Parser(JAVASCRIPT_LANGUAGE).parse(content)

    locations = find_modules_locations(tree.root_node) or {}
    modules = {
        module_id: content[start:end].decode("utf-8", errors="replace")
        for module_id, (start, end) in locations.items()
    }
    return ParsedBundle(
        src=content.decode("utf-8", errors="replace"),
        modules=modules,
        runtime_src=_runtime_source(content, locations).decode("utf-8", errors="replace"),
    )


def parse_bundle(bundle_path: Union[str, Path]) -> ParsedBundle:
    with open(bundle_path, "rb") as f:
        content = f.read()
    return parse_bundle_source(content)
