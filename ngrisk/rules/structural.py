"""Structural rules: checks that need declaration/usage sites, not just a regex."""
from __future__ import annotations

import re

from ..core.models import Hit, SourceFile
from . import structural_rule
from .sites import this_assignments

_IDENT = r"[A-Za-z_$][\w$]*"

# this.items().push(x)   this.state().name = x   this.rows()[0] = x
_ACCESSOR_MUTATION = re.compile(
    rf"(?<![\w$.])(?P<this>this\.)?(?P<name>{_IDENT})\(\)\s*(?:"
    rf"\.\s*{_IDENT}\s*(?:=(?![=>])|\+=|-=|\+\+|--)"
    r"|\[[^\]\n]+\]\s*=(?![=>])"
    r"|\.\s*(?:push|pop|shift|unshift|splice|sort|reverse|fill|copyWithin|set|add|delete|clear)\s*\("
    r")"
)
_TEARDOWN = re.compile(r"\b(?:takeUntilDestroyed|takeUntil|takeWhile|take|first)\s*\(")
_STORED = re.compile(rf"^\s*(?:return\b|(?:(?:const|let|var)\s+{_IDENT}|this\.[\w$.]+|{_IDENT})\s*(?::[^=]+)?=(?![=>]))")
_ADD_WRAPPER = re.compile(r"\.\s*add\s*\(\s*$")
_SELF_COMPLETING = re.compile(r"^\s*(?:this\.)?(?:http|httpClient)\s*\.")
_RECEIVER = re.compile(r"[\w$.]+")


@structural_rule("accessor_mutation")
def accessor_mutation(file: SourceFile, ctx) -> list[Hit]:
    """Writes into the value returned by invoking an accessor, bypassing set()/update()."""
    view = ctx.script
    hits: list[Hit] = []
    for m in _ACCESSOR_MUTATION.finditer(view.code):
        name = m.group("name")
        # a bare call only counts when the name is a local signal
        if m.group("this") is None and not view.is_reactive(name):
            continue
        hits.append(Hit(m.start(), m.end(), name))
    return hits


@structural_rule("subscription_assignment")
def subscription_assignment(file: SourceFile, ctx) -> list[Hit]:
    """Plain field writes inside subscribe() callbacks."""
    view = ctx.script
    hits: list[Hit] = []
    for site in view.subscriptions:
        for m in this_assignments(view.code, site.args_start, site.args_end):
            name = m.group("name")
            if view.is_reactive(name):
                continue
            hits.append(Hit(m.start(), m.end(), name))
    return hits


@structural_rule("subscription_teardown")
def subscription_teardown(file: SourceFile, ctx) -> list[Hit]:
    """subscribe() calls that are neither torn down by an operator nor kept for unsubscribe()."""
    if file.rel_path.endswith(".spec.ts"):
        return []
    view = ctx.script
    hits: list[Hit] = []
    for site in view.subscriptions:
        chain = view.code[site.statement_start:site.offset]
        if _TEARDOWN.search(chain) or _STORED.match(chain) or _SELF_COMPLETING.match(chain):
            continue
        if _ADD_WRAPPER.search(view.code[:site.statement_start]):
            continue
        lead = len(chain) - len(chain.lstrip())
        start = site.statement_start + lead
        receiver = _RECEIVER.match(view.code, start)
        hits.append(Hit(start, site.args_start, receiver.group(0) if receiver else "subscribe"))
    return hits
