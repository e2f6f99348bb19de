"""Lightweight declaration and usage sites for a TypeScript file.

Everything here works on comment- and string-masked text with regular
expressions and bracket counting. It accepts false negatives on deeply nested
or dynamically constructed code; it is not a TypeScript parser.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field

from ..core.models import SourceFile
from ..core.regions import code_text

_IDENT = r"[A-Za-z_$][\w$]*"

_REACTIVE_FACTORIES = (
    r"signal|computed|linkedSignal|toSignal|input(?:\.required)?|model(?:\.required)?"
    r"|viewChild(?:\.required)?|viewChildren|contentChild(?:\.required)?|contentChildren"
)
_MODIFIERS = r"(?:(?:public|private|protected|readonly|static|override|declare)\s+)*"

# count = signal(0);  readonly total = computed<number>(() => ...);
_FACTORY_DECL = re.compile(
    rf"^[ \t]*{_MODIFIERS}(?:(?:const|let|var)\s+|this\.)?(?P<name>#?{_IDENT})\s*(?::[^=;\n]+)?=\s*"
    rf"(?:{_REACTIVE_FACTORIES})\s*(?:<[^;\n]*?>)?\s*\(",
    re.MULTILINE,
)
# readonly open: WritableSignal<boolean>;  @Input() flag!: Signal<boolean>
_TYPED_DECL = re.compile(
    rf"^[ \t]*(?:@\w+\([^)]*\)\s*)?{_MODIFIERS}(?P<name>#?{_IDENT})\s*[!?]?\s*:\s*"
    r"(?:Writable|Input|Model)?Signal\s*<",
    re.MULTILINE,
)
_CLASS_DECL = re.compile(
    rf"\bclass\s+(?P<name>{_IDENT})\s*(?:<[^{{]*?>)?\s*(?:extends\s+(?P<base>{_IDENT})(?:<[^{{]*?>)?)?[^{{]*\{{"
)
_SUBSCRIBE = re.compile(r"\.\s*subscribe\s*\(")
_THIS_ASSIGN = re.compile(rf"\bthis\.(?P<name>{_IDENT})\s*(?:=(?![=>])|\+=|-=|\?\?=|\|\|=|&&=)")

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")": "(", "]": "[", "}": "{"}


@dataclass(frozen=True)
class Declaration:
    name: str
    offset: int


@dataclass(frozen=True)
class ClassSite:
    name: str
    base: str | None
    offset: int
    body_start: int
    body_end: int


@dataclass(frozen=True)
class SubscribeSite:
    offset: int  # position of the "." before subscribe
    args_start: int
    args_end: int
    statement_start: int


@dataclass
class ScriptView:
    """Flat lists of the declaration and usage sites a structural rule needs."""

    file: SourceFile
    code: str
    declarations: dict[str, Declaration] = field(default_factory=dict)
    classes: list[ClassSite] = field(default_factory=list)
    subscriptions: list[SubscribeSite] = field(default_factory=list)

    def is_reactive(self, name: str) -> bool:
        return name in self.declarations

    def class_at(self, offset: int) -> ClassSite | None:
        """Innermost class whose body contains offset."""
        best = None
        for site in self.classes:
            if site.body_start <= offset < site.body_end:
                if best is None or site.body_start > best.body_start:
                    best = site
        return best


def build_view(file: SourceFile) -> ScriptView:
    code = code_text(file)
    view = ScriptView(file=file, code=code)

    for pattern in (_FACTORY_DECL, _TYPED_DECL):
        for m in pattern.finditer(code):
            name = m.group("name")
            # first declaration wins so cross references point at the earliest site
            if name not in view.declarations:
                view.declarations[name] = Declaration(name=name, offset=m.start("name"))

    for m in _CLASS_DECL.finditer(code):
        body_start = m.end() - 1
        body_end = find_closing(code, body_start)
        view.classes.append(ClassSite(
            name=m.group("name"),
            base=m.group("base"),
            offset=m.start("name"),
            body_start=body_start,
            body_end=body_end if body_end is not None else len(code),
        ))

    for m in _SUBSCRIBE.finditer(code):
        args_open = m.end() - 1
        args_close = find_closing(code, args_open)
        view.subscriptions.append(SubscribeSite(
            offset=m.start(),
            args_start=args_open + 1,
            args_end=args_close if args_close is not None else len(code),
            statement_start=statement_start(code, m.start()),
        ))

    return view


def this_assignments(code: str, start: int, end: int) -> list[re.Match]:
    """`this.x = ...` style writes between start and end."""
    return list(_THIS_ASSIGN.finditer(code, start, end))


def find_closing(code: str, open_index: int) -> int | None:
    """Index of the bracket closing the one at open_index, or None if unbalanced."""
    stack = [code[open_index]]
    i = open_index + 1
    n = len(code)
    while i < n:
        ch = code[i]
        if ch in _OPENERS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                return None
            stack.pop()
            if not stack:
                return i
        i += 1
    return None


def statement_start(code: str, offset: int) -> int:
    """Walk back from offset to the start of the enclosing expression statement."""
    depth = 0
    i = offset - 1
    while i >= 0:
        ch = code[i]
        if ch == "}" and depth == 0:
            return i + 1
        if ch in _CLOSERS:
            depth += 1
        elif ch in _OPENERS:
            if depth == 0:
                return i + 1
            depth -= 1
        elif ch == ";" and depth == 0:
            return i + 1
        i -= 1
    return 0


class ViewCache:
    """Builds each file's ScriptView once; safe to share between matcher threads."""

    def __init__(self) -> None:
        self._views: dict[SourceFile, ScriptView] = {}
        self._lock = threading.Lock()

    def get(self, file: SourceFile) -> ScriptView:
        with self._lock:
            view = self._views.get(file)
        if view is None:
            view = build_view(file)
            with self._lock:
                view = self._views.setdefault(file, view)
        return view
