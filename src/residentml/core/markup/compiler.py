"""
Template compiler.

Turns author markup into a ``CompiledTemplate``:

1. Parse markup into nodes (``html_parser``), enforcing size limits.
2. Normalise in document order: resolve tag names through the registry,
   declare variables, check that every variable reference follows its
   ``Var``, validate expressions and compile event bodies.
3. Extract islands top-down and replace them in the AST with ``#island``
   references. Island ids are derived from content, so identical markup
   always yields identical ids.

Compilation is pure: no store, no resident data, no I/O.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from markupsafe import escape

from residentml.core.errors import CompileError, ErrorKind, make_compile_error
from residentml.core.expression_lang.analysis import extract_variable_names
from residentml.core.expression_lang.conditions import (
    PATH_RE,
    condition_variable_paths,
)
from residentml.core.expression_lang.parser import (
    DEFAULT_MAX_NODES,
    ExpressionParseError,
    parse_expr,
)
from residentml.core.ir.actions import (
    EVENT_TAGS,
    ActionInvocation,
    ActionKind,
    ActionStep,
    ConditionalActions,
    ConditionalBranch,
    EventBinding,
    EventKind,
    SequenceActions,
    SequenceStep,
    SwitchActions,
    SwitchCase,
)
from residentml.core.ir.expressions import Expr
from residentml.core.ir.template import (
    FRAGMENT_TAG,
    ISLAND_TAG,
    ROOT_TAG,
    CompilationStats,
    CompiledTemplate,
    Island,
    IslandKind,
    TemplateNode,
)
from residentml.core.ir.variables import VariableSpec, VariableType
from residentml.core.manifest import CompilerLimits
from residentml.core.markup.html_parser import MarkupLimitError, parse_markup
from residentml.core.markup.tags import TagKind, TagRegistry, default_registry
from residentml.core.state.coercion import parse_initial

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[A-Za-z_]\w*$")
_HEAD_RE = re.compile(r"^(?:\$vars\.)?([A-Za-z_]\w*)")

_VARIABLE_TYPES = {t.value.lower(): t for t in VariableType}
_CHAIN_TAGS = ("If", "ElseIf", "Else")
_CONDITION_TAGS = frozenset({"If", "ElseIf", "Show", "When"})
_BOUND_TAGS = frozenset({"ShowVar", "ForEach", "TInput", "Checkbox"})
_EVENT_PARENTS = frozenset({TagKind.STRUCTURAL, TagKind.COMPONENT, TagKind.INPUT})

# Attributes each action must carry
_REQUIRED_ATTRIBUTES: dict[ActionKind, tuple[str, ...]] = {
    ActionKind.SET: ("var",),
    ActionKind.INCREMENT: ("var",),
    ActionKind.DECREMENT: ("var",),
    ActionKind.TOGGLE: ("var",),
    ActionKind.CYCLE: ("var", "values"),
    ActionKind.APPEND: ("var",),
    ActionKind.PREPEND: ("var",),
    ActionKind.PUSH: ("var",),
    ActionKind.POP: ("var",),
    ActionKind.REMOVE_AT: ("var", "index"),
    ActionKind.ARRAY_AT: ("array", "index", "var"),
    ActionKind.OBJECT_SET: ("var", "path"),
    ActionKind.MERGE: ("sources", "target"),
    ActionKind.CLONE: ("var", "target"),
    ActionKind.EXTRACT: ("from",),
    ActionKind.FILTER: ("var", "where"),
    ActionKind.SORT: ("var",),
    ActionKind.TRANSFORM: ("var", "expression"),
    ActionKind.FIND: ("var", "where", "target"),
    ActionKind.SUM: ("var", "target"),
    ActionKind.COUNT: ("var", "target"),
    ActionKind.GET: ("target",),
    ActionKind.SHOW_TOAST: ("message",),
}

# Actions that need a value to write
_VALUE_ACTIONS = frozenset(
    {ActionKind.SET, ActionKind.PUSH, ActionKind.APPEND, ActionKind.PREPEND, ActionKind.OBJECT_SET}
)

_EXPRESSION_ATTRIBUTES = ("expression", "where", "by")
_VARIABLE_ATTRIBUTES = ("var", "target", "array", "order-var")

Names = frozenset[str]


@dataclass
class CompilationResult:
    """Outcome of ``compile_template``; ``template`` is None when errors exist."""

    success: bool
    template: CompiledTemplate | None = None
    errors: list[CompileError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def unwrap(self) -> CompiledTemplate:
        """Return the template or raise the first error."""
        if self.template is None:
            raise self.errors[0] if self.errors else CompileError(
                "Compilation failed", ErrorKind.INVALID_ATTRIBUTE
            )
        return self.template


def compile_template(
    markup: str,
    *,
    registry: TagRegistry | None = None,
    limits: CompilerLimits | None = None,
    max_expression_nodes: int = DEFAULT_MAX_NODES,
) -> CompilationResult:
    """
    Compile author markup.

    Args:
        markup: Template markup (fragment or full document)
        registry: Tag registry; defaults to the built-in tags plus
            ``limits.extra_components``
        limits: Size limits for untrusted markup
        max_expression_nodes: Upper bound on each expression's AST size

    Returns:
        CompilationResult with the compiled template or the collected errors.
    """
    limits = limits or CompilerLimits()
    registry = registry or default_registry(limits.extra_components)

    markup_bytes = len(markup.encode("utf-8"))
    if markup_bytes > limits.max_markup_bytes:
        error = make_compile_error(
            f"Template is {markup_bytes} bytes; the limit is {limits.max_markup_bytes}",
            ErrorKind.LIMIT_EXCEEDED,
        )
        return CompilationResult(success=False, errors=[error])

    try:
        parsed = parse_markup(markup, max_depth=limits.max_depth, max_nodes=limits.max_nodes)
    except MarkupLimitError as e:
        error = make_compile_error(e.message, ErrorKind.LIMIT_EXCEEDED, e.line, e.column)
        return CompilationResult(success=False, errors=[error])

    compiler = _Compiler(registry, markup, max_expression_nodes)
    compiler.warnings.extend(parsed.warnings)
    ast = compiler.normalize_root(parsed.root)

    if compiler.component_count > limits.max_components:
        compiler.errors.append(
            make_compile_error(
                f"Template uses {compiler.component_count} components; "
                f"the limit is {limits.max_components}",
                ErrorKind.LIMIT_EXCEEDED,
            )
        )

    if compiler.errors:
        logger.debug("Compilation failed with %d error(s)", len(compiler.errors))
        return CompilationResult(
            success=False, errors=compiler.errors, warnings=compiler.warnings
        )

    skeleton = compiler.extract_islands(ast)
    template = CompiledTemplate(
        ast=skeleton,
        islands=compiler.islands,
        variables=list(compiler.variables.values()),
        initializers=compiler.initializers,
        stats=CompilationStats(
            node_count=parsed.node_count,
            max_depth=parsed.max_depth,
            component_count=compiler.component_count,
            markup_bytes=markup_bytes,
        ),
    )
    logger.debug(
        "Compiled template: %d nodes, %d islands, %d variables",
        parsed.node_count,
        len(template.islands),
        len(template.variables),
    )
    return CompilationResult(success=True, template=template, warnings=compiler.warnings)


class _Compiler:
    def __init__(self, registry: TagRegistry, markup: str, max_expression_nodes: int) -> None:
        self.registry = registry
        self.lines = markup.splitlines()
        self.max_expression_nodes = max_expression_nodes

        self.errors: list[CompileError] = []
        self.warnings: list[str] = []
        self.variables: dict[str, VariableSpec] = {}
        self.initializers: list[ActionStep] = []
        self.islands: list[Island] = []
        self.component_count = 0
        self._island_ids: dict[str, int] = {}

    # -- Diagnostics --

    def _error(self, message: str, kind: ErrorKind, node: TemplateNode | None = None) -> None:
        if node is not None and node.span is not None:
            line, column = node.span.line, node.span.column
            snippet = "\n".join(self.lines[max(0, line - 3) : line]) or None
            self.errors.append(make_compile_error(message, kind, line, column, snippet))
        else:
            self.errors.append(make_compile_error(message, kind))

    def _invalid(self, message: str, node: TemplateNode) -> None:
        self._error(message, ErrorKind.INVALID_ATTRIBUTE, node)

    def _warn(self, message: str, node: TemplateNode | None = None) -> None:
        if node is not None and node.span is not None:
            message = f"{node.span.line}:{node.span.column}: {message}"
        self.warnings.append(message)

    # -- Phase 1: normalisation and validation --

    def normalize_root(self, root: TemplateNode) -> TemplateNode:
        children = self._normalize_children(root.children, frozenset(), ROOT_TAG)
        return TemplateNode(tag=ROOT_TAG, children=children, span=root.span)

    def _normalize_children(
        self,
        children: Sequence[TemplateNode],
        local_names: Names,
        parent_tag: str,
    ) -> list[TemplateNode]:
        normalized: list[TemplateNode] = []
        for child in children:
            normalized.extend(self._normalize(child, local_names, parent_tag))
        return self._group_chains(normalized)

    def _group_chains(self, nodes: list[TemplateNode]) -> list[TemplateNode]:
        """Wrap each If with its ElseIf/Else siblings in a Fragment."""
        grouped: list[TemplateNode] = []
        chain: list[TemplateNode] = []

        def close_chain() -> None:
            if len(chain) > 1:
                fragment = TemplateNode(tag=FRAGMENT_TAG, children=list(chain), span=chain[0].span)
                grouped.append(fragment)
            else:
                grouped.extend(chain)
            chain.clear()

        for node in nodes:
            if node.tag == "If":
                close_chain()
                chain.append(node)
            elif node.tag in ("ElseIf", "Else"):
                if not chain or chain[-1].tag == "Else":
                    self._invalid(f"<{node.tag}> without a preceding <If>", node)
                    continue
                chain.append(node)
            elif chain and node.is_text and not (node.text or "").strip():
                continue
            else:
                close_chain()
                grouped.append(node)
        close_chain()
        return grouped

    def _normalize(
        self,
        node: TemplateNode,
        local_names: Names,
        parent_tag: str,
    ) -> list[TemplateNode]:
        if node.is_text:
            return [node]

        spec = self.registry.resolve(node.tag)
        if spec is None:
            self._error(f"Unknown tag <{node.tag}>", ErrorKind.UNKNOWN_TAG, node)
            return []
        tag, kind = spec.name, spec.kind
        node = node.model_copy(update={"tag": tag})

        if kind == TagKind.VARIABLE:
            self._declare(node)
            return []

        if kind == TagKind.EVENT:
            parent_kind = self.registry.kind_of(parent_tag)
            if parent_kind not in _EVENT_PARENTS:
                self._warn(f"<{tag}> inside <{parent_tag}> has no element to bind to", node)
                return []
            self._compile_event(node, local_names)
            return [self._canonical(node)]

        if kind == TagKind.ACTION:
            if tag == ActionKind.EXTRACT:
                action = self._compile_action(node, local_names)
                if action is not None:
                    self.initializers.append(action)
            else:
                self._warn(f"<{tag}> outside an event handler is ignored", node)
            return []

        if kind == TagKind.TEMPORAL:
            self._warn(f"<{tag}> outside an event handler is ignored", node)
            return []

        if kind == TagKind.COMPONENT:
            self.component_count += 1

        local_names = self._check_node(node, tag, local_names)
        children = self._normalize_children(node.children, local_names, tag)
        return [node.model_copy(update={"children": children})]

    def _check_node(self, node: TemplateNode, tag: str, local_names: Names) -> Names:
        """Validate DSL attributes; returns the local names visible to children."""
        attrs = node.attributes

        if tag in _CONDITION_TAGS:
            self._check_condition(node, local_names)
        elif tag == "ForEach":
            name = attrs.get("var")
            if not name:
                self._invalid("<ForEach> needs a 'var' attribute", node)
            else:
                self._require_variable(name, node, local_names)
            item, index = attrs.get("item") or "item", attrs.get("index") or "index"
            for binding in (item, index):
                if not NAME_RE.match(binding):
                    self._invalid(f"Invalid loop binding name '{binding}'", node)
            return local_names | {item, index}
        elif tag == "Switch":
            if attrs.get("value"):
                self._check_expression(attrs["value"], node, local_names)
            elif attrs.get("var"):
                self._require_variable(attrs["var"], node, local_names)
            else:
                self._invalid("<Switch> needs 'value' or 'var'", node)
        elif tag == "Case":
            if "value" not in attrs:
                self._invalid("<Case> needs a 'value' attribute", node)
        elif tag == "ShowVar":
            name = attrs.get("name") or attrs.get("var")
            if not name:
                self._invalid("<ShowVar> needs a 'name' attribute", node)
            else:
                self._require_variable(name, node, local_names)
        elif tag in ("TInput", "Checkbox"):
            name = attrs.get("var")
            if not name:
                self._invalid(f"<{tag}> needs a 'var' attribute", node)
            else:
                self._require_variable(name, node, local_names)
        return local_names

    def _check_condition(self, node: TemplateNode, local_names: Names) -> None:
        for path in condition_variable_paths(node.attributes):
            path = path.strip()
            if PATH_RE.match(path):
                if path.startswith("$vars."):
                    self._require_variable(path, node, local_names)
            else:
                self._check_expression(path, node, local_names)

    def _check_expression(
        self, source: str, node: TemplateNode, local_names: Names
    ) -> Expr | None:
        try:
            expr = parse_expr(source, self.max_expression_nodes)
        except ExpressionParseError as e:
            self._error(
                f"Invalid expression {source!r}: {e.message}", ErrorKind.INVALID_EXPRESSION, node
            )
            return None
        for name in sorted(extract_variable_names(expr)):
            if name not in self.variables:
                self._error(
                    f"Variable '{name}' is used before it is declared",
                    ErrorKind.UNDECLARED_VARIABLE,
                    node,
                )
        return expr

    def _require_variable(self, reference: str, node: TemplateNode, local_names: Names) -> None:
        match = _HEAD_RE.match(reference.strip())
        if match is None:
            self._invalid(f"Invalid variable reference {reference!r}", node)
            return
        name = match.group(1)
        if not reference.strip().startswith("$vars.") and name in local_names:
            return
        if name not in self.variables:
            self._error(
                f"Variable '{name}' is used before it is declared",
                ErrorKind.UNDECLARED_VARIABLE,
                node,
            )

    def _declare(self, node: TemplateNode) -> None:
        attrs = node.attributes
        name = attrs.get("name", "")
        if not NAME_RE.match(name):
            self._invalid(f"<Var> needs a valid 'name' (got {name!r})", node)
            return
        var_type = _VARIABLE_TYPES.get(attrs.get("type", "").strip().lower())
        if var_type is None:
            self._error(
                f"<Var name=\"{name}\"> has unknown type {attrs.get('type')!r}",
                ErrorKind.INVALID_ATTRIBUTE,
                node,
            )
            return
        if name in self.variables:
            self._error(f"Variable '{name}' is declared twice", ErrorKind.DUPLICATE_VARIABLE, node)
            return

        persist = attrs.get("persist", "false").strip().lower() in ("", "true")

        if var_type == VariableType.COMPUTED:
            expression = attrs.get("expression", "")
            if not expression.strip():
                self._invalid(f"Computed variable '{name}' needs an 'expression'", node)
                return
            try:
                expr = parse_expr(expression, self.max_expression_nodes)
            except ExpressionParseError as e:
                self._error(
                    f"Invalid expression for '{name}': {e.message}",
                    ErrorKind.INVALID_EXPRESSION,
                    node,
                )
                return
            dependencies = sorted(extract_variable_names(expr))
            if name in dependencies:
                self._error(
                    f"Computed variable '{name}' depends on itself", ErrorKind.CYCLIC_COMPUTED, node
                )
                return
            missing = [d for d in dependencies if d not in self.variables]
            if missing:
                self._error(
                    f"Computed variable '{name}' reads undeclared {', '.join(missing)}",
                    ErrorKind.UNDECLARED_VARIABLE,
                    node,
                )
                return
            self.variables[name] = VariableSpec(
                name=name, type=var_type, expression=expression, dependencies=dependencies
            )
            return

        if var_type == VariableType.URL_PARAM:
            self.variables[name] = VariableSpec(
                name=name,
                type=var_type,
                initial=attrs.get("initial"),
                param=attrs.get("param") or name,
                default=attrs.get("default"),
                coerce=(attrs.get("coerce") or "").lower() or None,
                separator=attrs.get("separator") or ",",
            )
            return

        raw = attrs.get("initial", attrs.get("value"))
        try:
            initial = parse_initial(var_type, raw)
        except ValueError as e:
            self._error(
                f"Initial value for '{name}' is not a valid {var_type}: {e}",
                ErrorKind.INVALID_ATTRIBUTE,
                node,
            )
            return
        self.variables[name] = VariableSpec(
            name=name, type=var_type, initial=initial, persist=persist
        )

    def _declare_implicit(self, name: str, node: TemplateNode) -> None:
        if not NAME_RE.match(name):
            self._invalid(f"Invalid variable name {name!r}", node)
            return
        if name not in self.variables:
            self.variables[name] = VariableSpec(
                name=name, type=VariableType.OBJECT, implicit=True
            )

    def _canonical(self, node: TemplateNode) -> TemplateNode:
        """Resolve tag names in an event body; unknown tags were reported already."""
        children = []
        for child in node.children:
            if child.is_text:
                continue
            spec = self.registry.resolve(child.tag)
            if spec is not None:
                children.append(self._canonical(child.model_copy(update={"tag": spec.name})))
        return node.model_copy(update={"children": children})

    # -- Event bodies --

    def _compile_event(
        self, node: TemplateNode, local_names: Names, binding_id: str = ""
    ) -> EventBinding | None:
        event_kind = EVENT_TAGS[node.tag]
        interval_ms = None
        if event_kind == EventKind.INTERVAL:
            interval_ms = self._duration_ms(node, ("milliseconds", "ms", "interval"), "seconds")
            if interval_ms is None or interval_ms <= 0:
                self._error(
                    "<OnInterval> needs a positive 'seconds' or 'milliseconds'",
                    ErrorKind.INVALID_ATTRIBUTE,
                    node,
                )
                return None
        actions = self._compile_steps(node.children, local_names, node.tag)
        return EventBinding(
            id=binding_id, event_kind=event_kind, interval_ms=interval_ms, actions=actions
        )

    def _duration_ms(
        self, node: TemplateNode, ms_keys: tuple[str, ...], seconds_key: str
    ) -> int | None:
        try:
            for key in ms_keys:
                if key in node.attributes:
                    return int(float(node.attributes[key]))
            if seconds_key in node.attributes:
                return int(float(node.attributes[seconds_key]) * 1000)
        except ValueError:
            self._invalid(f"<{node.tag}> has a non-numeric duration", node)
        return None

    def _compile_steps(
        self,
        children: Sequence[TemplateNode],
        local_names: Names,
        context_tag: str,
    ) -> list[ActionStep]:
        steps: list[ActionStep] = []
        chain: ConditionalActions | None = None

        for child in children:
            if child.is_text:
                if (child.text or "").strip():
                    self._warn(f"Text inside <{context_tag}> is ignored", child)
                continue
            spec = self.registry.resolve(child.tag)
            if spec is None:
                self._error(f"Unknown tag <{child.tag}>", ErrorKind.UNKNOWN_TAG, child)
                continue
            tag = spec.name

            if tag in _CHAIN_TAGS:
                condition = None if tag == "Else" else dict(child.attributes)
                if condition is not None:
                    self._check_condition(child, local_names)
                branch = ConditionalBranch(
                    condition=condition,
                    actions=self._compile_steps(child.children, local_names, tag),
                )
                if tag == "If":
                    chain = ConditionalActions(branches=[branch])
                    steps.append(chain)
                elif chain is None or chain.branches[-1].condition is None:
                    self._invalid(f"<{tag}> without a preceding <If>", child)
                else:
                    chain = chain.model_copy(update={"branches": [*chain.branches, branch]})
                    steps[-1] = chain
                continue
            chain = None

            if tag == "Switch":
                step = self._compile_switch(child, local_names)
            elif tag in ("Sequence", "Delay"):
                step = self._compile_sequence(child, local_names)
            elif spec.kind == TagKind.ACTION:
                step = self._compile_action(child, local_names)
            else:
                self._invalid(f"<{tag}> is not allowed inside <{context_tag}>", child)
                continue
            if step is not None:
                steps.append(step)
        return steps

    def _compile_switch(self, node: TemplateNode, local_names: Names) -> SwitchActions | None:
        attrs = node.attributes
        value = attrs.get("value") or (f"$vars.{attrs['var']}" if attrs.get("var") else "")
        if not value:
            self._invalid("<Switch> needs 'value' or 'var'", node)
            return None
        self._check_expression(value, node, local_names)

        cases: list[SwitchCase] = []
        for child in node.children:
            if child.is_text:
                continue
            tag = self.registry.resolve(child.tag)
            if tag is not None and tag.name == "Case":
                cases.append(
                    SwitchCase(
                        value=child.attributes.get("value", ""),
                        actions=self._compile_steps(child.children, local_names, "Case"),
                    )
                )
            elif tag is not None and tag.name == "Default":
                cases.append(
                    SwitchCase(actions=self._compile_steps(child.children, local_names, "Default"))
                )
            else:
                self._invalid(f"<{child.tag}> is not allowed inside <Switch>", child)
        return SwitchActions(value=value, cases=cases)

    def _compile_sequence(self, node: TemplateNode, local_names: Names) -> SequenceActions | None:
        if node.tag.lower() == "delay":
            delay = self._delay_of(node)
            if delay is None:
                return None
            if not [c for c in node.children if not c.is_text]:
                self._warn("<Delay> outside <Sequence> without children does nothing", node)
                return None
            actions = self._compile_steps(node.children, local_names, "Delay")
            return SequenceActions(steps=[SequenceStep(delay_ms=delay, actions=actions)])

        steps: list[SequenceStep] = []
        pending_delay = 0
        pending: list[TemplateNode] = []

        def flush() -> None:
            nonlocal pending_delay
            if pending:
                actions = self._compile_steps(pending, local_names, "Sequence")
                steps.append(SequenceStep(delay_ms=pending_delay, actions=actions))
                pending.clear()
                pending_delay = 0

        for child in node.children:
            if child.is_text:
                continue
            spec = self.registry.resolve(child.tag)
            name = spec.name if spec else child.tag
            if name in ("Step", "Delay"):
                delay = self._delay_of(child)
                if delay is None:
                    continue
                flush()
                body = [c for c in child.children if not c.is_text]
                if body:
                    actions = self._compile_steps(child.children, local_names, name)
                    steps.append(SequenceStep(delay_ms=pending_delay + delay, actions=actions))
                    pending_delay = 0
                else:
                    pending_delay += delay
            else:
                pending.append(child)
        flush()
        return SequenceActions(steps=steps)

    def _delay_of(self, node: TemplateNode) -> int | None:
        delay = self._duration_ms(node, ("milliseconds", "ms", "delay"), "seconds")
        if delay is None:
            if node.tag.lower() == "step":
                return 0
            self._invalid(f"<{node.tag}> needs 'seconds' or 'milliseconds'", node)
            return None
        if delay < 0:
            self._invalid(f"<{node.tag}> delay must not be negative", node)
            return None
        return delay

    def _compile_action(self, node: TemplateNode, local_names: Names) -> ActionInvocation | None:
        spec = self.registry.resolve(node.tag)
        if spec is None or spec.name == "Property":
            self._invalid(f"<{node.tag}> is only valid inside <Extract>", node)
            return None
        kind = ActionKind(spec.name)
        attrs = node.attributes

        missing = [key for key in _REQUIRED_ATTRIBUTES.get(kind, ()) if not attrs.get(key)]
        if kind == ActionKind.GET and not (attrs.get("from") or attrs.get("var")):
            missing.append("from")
        if kind in _VALUE_ACTIONS and "value" not in attrs and "expression" not in attrs:
            missing.append("value")
        if missing:
            self._error(
                f"<{kind}> is missing {', '.join(repr(m) for m in missing)}",
                ErrorKind.INVALID_ATTRIBUTE,
                node,
            )
            return None

        for key in _EXPRESSION_ATTRIBUTES:
            if attrs.get(key):
                self._check_expression(attrs[key], node, local_names)

        entries: list[dict[str, str]] = []
        if kind == ActionKind.EXTRACT:
            for child in node.children:
                if child.is_text:
                    continue
                if child.tag.lower() != "property" or not child.attributes.get("as"):
                    self._error(
                        "<Extract> children must be <Property path=... as=...>",
                        ErrorKind.INVALID_ATTRIBUTE,
                        child,
                    )
                    continue
                entries.append(
                    {"path": child.attributes.get("path", ""), "as": child.attributes["as"]}
                )
                self._declare_implicit(child.attributes["as"], child)
            if attrs.get("var"):
                self._declare_implicit(attrs["var"], node)
            if not entries and not attrs.get("var"):
                self._invalid("<Extract> needs <Property> children or 'var'", node)
                return None

        for key in _VARIABLE_ATTRIBUTES:
            if attrs.get(key):
                self._require_variable(attrs[key], node, frozenset())
        for source in (s.strip() for s in attrs.get("sources", "").split(",")):
            if source:
                self._require_variable(source, node, frozenset())
        if attrs.get("from"):
            self._require_variable(attrs["from"], node, frozenset())

        if kind == ActionKind.ARRAY_AT:
            target = attrs.get("var")
        elif kind == ActionKind.EXTRACT:
            target = attrs.get("var") if attrs.get("path") else None
        else:
            target = attrs.get("target") or attrs.get("var")
        return ActionInvocation(kind=kind, target_var=target, params=dict(attrs), entries=entries)

    # -- Phase 2: island extraction --

    def extract_islands(self, root: TemplateNode) -> TemplateNode:
        # Event bodies are compiled a second time here; their warnings were already reported
        mark = len(self.warnings)
        skeleton = root.model_copy(update={"children": self._extract_children(root.children)})
        del self.warnings[mark:]
        return skeleton

    def _extract_children(self, children: list[TemplateNode]) -> list[TemplateNode]:
        extracted = []
        for child in children:
            if child.is_text:
                extracted.append(child)
            elif self._is_island_root(child):
                extracted.append(self._make_island(child))
            else:
                extracted.append(
                    child.model_copy(update={"children": self._extract_children(child.children)})
                )
        return extracted

    def _is_island_root(self, node: TemplateNode) -> bool:
        kind = self.registry.kind_of(node.tag)
        if kind == TagKind.COMPONENT or node.tag in _BOUND_TAGS:
            return True
        elements = [c for c in node.children if not c.is_text]
        if any(self.registry.kind_of(c.tag) == TagKind.EVENT for c in elements):
            return True
        if node.tag == FRAGMENT_TAG:
            return any(self._is_reactive(c) for c in node.children if not c.is_text)
        return self._is_reactive(node)

    def _is_reactive(self, node: TemplateNode) -> bool:
        """Whether a control node's condition reads template variables."""
        if node.tag in _CONDITION_TAGS:
            paths = condition_variable_paths(node.attributes)
            return any(self._reads_variables(path) for path in paths)
        if node.tag == "Switch":
            if node.attributes.get("var"):
                return True
            return self._reads_variables(node.attributes.get("value", ""))
        if node.tag == "Choose":
            return any(self._is_reactive(c) for c in node.children if not c.is_text)
        return False

    def _reads_variables(self, path: str) -> bool:
        path = path.strip()
        if not path:
            return False
        if PATH_RE.match(path):
            match = _HEAD_RE.match(path)
            if path.startswith("$vars."):
                return True
            return match is not None and match.group(1) in self.variables
        try:
            return bool(extract_variable_names(parse_expr(path, self.max_expression_nodes)))
        except ExpressionParseError:
            return False

    def _make_island(self, node: TemplateNode) -> TemplateNode:
        canonical = json.dumps(node.canonical(), sort_keys=True, separators=(",", ":"))
        base = "island-" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]
        count = self._island_ids.get(base, 0) + 1
        self._island_ids[base] = count
        island_id = base if count == 1 else f"{base}-{count}"

        bindings: list[EventBinding] = []
        annotated = self._bind_events(node, island_id, bindings)

        is_component = self.registry.kind_of(node.tag) == TagKind.COMPONENT
        placeholder = (
            f'<div data-island="{escape(island_id)}" data-component="{escape(node.tag)}"></div>'
        )
        self.islands.append(
            Island(
                id=island_id,
                component=node.tag,
                kind=IslandKind.COMPONENT if is_component else IslandKind.TEMPLATE,
                props=dict(node.attributes),
                placeholder=placeholder,
                node=annotated,
                bindings=bindings,
            )
        )
        return TemplateNode(tag=ISLAND_TAG, attributes={"id": island_id}, span=node.span)

    def _bind_events(
        self, node: TemplateNode, island_id: str, bindings: list[EventBinding]
    ) -> TemplateNode:
        """Compile event bodies in document order and tag each event node with its binding id."""
        if node.tag in EVENT_TAGS:
            binding_id = f"{island_id}/b{len(bindings) + 1}"
            binding = self._compile_event(node, frozenset(), binding_id)
            if binding is not None:
                bindings.append(binding)
            attributes = {**node.attributes, "binding": binding_id}
            return node.model_copy(update={"attributes": attributes})
        if not node.children:
            return node
        return node.model_copy(
            update={"children": [self._bind_events(c, island_id, bindings) for c in node.children]}
        )
