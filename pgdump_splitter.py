"""PostgreSQL schema dump splitter: statement tokenizer, classifier and table attachment."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from functools import reduce
from math import gcd
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"


class ObjectKind(Enum):
    SCHEMA = "schema"
    EXTENSION = "extension"
    TYPE = "type"
    DOMAIN = "domain"
    FUNCTION = "function"
    PROCEDURE = "procedure"
    TABLE = "table"
    VIEW = "view"
    SEQUENCE = "sequence"
    CONSTRAINT = "constraint"
    INDEX = "index"

    @property
    def is_attachable(self) -> bool:
        return self in _ATTACHABLE_KINDS


_ATTACHABLE_KINDS = frozenset({ObjectKind.SEQUENCE, ObjectKind.CONSTRAINT, ObjectKind.INDEX})


@dataclass
class ParsedObject:
    """A database object that gets its own file."""

    kind: ObjectKind
    schema: str
    name: str
    definition: str
    qualified_name: Optional[str] = None
    sequences: Optional[List[str]] = None
    constraints: Optional[List[str]] = None
    indexes: Optional[List[str]] = None

    @property
    def path_stem(self) -> str:
        return self.qualified_name or self.name


@dataclass
class AttachableStatement:
    """Sequence, constraint or index statement owned by a table."""

    kind: ObjectKind
    schema: str
    table: str
    name: Optional[str]
    definition: str
    column: Optional[str] = None

    @property
    def qualified_table(self) -> str:
        return _qualify(self.schema, self.table)


@dataclass
class ClassifiedStatement:
    kind: ObjectKind
    schema: str
    name: Optional[str]
    definition: str
    residual: str = ""
    table: Optional[str] = None
    column: Optional[str] = None

    def to_object(self) -> ParsedObject:
        name = self.name or ""
        if self.kind == ObjectKind.SCHEMA:
            return ParsedObject(self.kind, self.schema, name, self.definition)
        return ParsedObject(
            self.kind,
            self.schema,
            name,
            self.definition,
            qualified_name=_qualify(self.schema, name),
        )

    def to_attachable(self) -> AttachableStatement:
        return AttachableStatement(
            kind=self.kind,
            schema=self.schema,
            table=self.table or "",
            name=self.name,
            definition=self.definition,
            column=self.column,
        )


@dataclass
class ParseResult:
    objects: List[ParsedObject] = field(default_factory=list)
    residual: str = ""

    def counts_by_kind(self) -> Dict[str, int]:
        counts = Counter(obj.kind.value for obj in self.objects)
        return dict(sorted(counts.items()))


def _qualify(schema: str, name: str) -> str:
    return f"{schema}.{name}"


_DOLLAR_QUOTE_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


def split_statements(text: str, separator: str = ";") -> List[str]:
    """Split SQL text on ``separator`` outside comments, quotes and dollar quotes.

    Each statement keeps its trailing separator. A trailing remainder without a
    separator is returned as the last statement. Dollar-quoted spans are copied
    as opaque text; an unclosed dollar-quote tag is kept literally and scanning
    carries on.
    """

    statements: List[str] = []
    buf: List[str] = []
    in_line_comment = False
    in_block_comment = False
    in_single_quote = False
    in_double_quote = False
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < length else ""

        if ch == "$":
            match = _DOLLAR_QUOTE_RE.match(text, i)
            if not match:
                buf.append(ch)
                i += 1
                continue
            tag = match.group(0)
            close = text.find(tag, match.end())
            if close == -1:
                buf.append(tag)
                i = match.end()
            else:
                buf.append(text[i:close + len(tag)])
                i = close + len(tag)
            continue

        if not in_single_quote and not in_double_quote:
            if not in_block_comment and ch == "-" and nxt == "-":
                in_line_comment = True
                buf.append("--")
                i += 2
                continue
            if not in_line_comment and ch == "/" and nxt == "*":
                in_block_comment = True
                buf.append("/*")
                i += 2
                continue

        if in_line_comment:
            if ch in "\r\n":
                in_line_comment = False
        elif in_block_comment:
            if ch == "*" and nxt == "/":
                in_block_comment = False
                buf.append("*/")
                i += 2
                continue
        else:
            if ch == "'" and not in_double_quote:
                in_single_quote = not in_single_quote
            elif ch == '"' and not in_single_quote:
                in_double_quote = not in_double_quote
            if ch == separator and not in_single_quote and not in_double_quote:
                buf.append(ch)
                statements.append("".join(buf))
                buf = []
                i += 1
                continue

        buf.append(ch)
        i += 1

    if buf:
        statements.append("".join(buf))
    return statements


_IDENT = r'(?:[^\W\d][\w$]*|"(?:[^"]|"")+")'
# groups: schema (optional), object name
_QUALIFIED = rf"(?:({_IDENT})\.)?({_IDENT})"

# schema, name, owning table, column
_Extracted = Tuple[str, Optional[str], Optional[str], Optional[str]]
_Extractor = Callable[["re.Match[str]"], _Extracted]


@dataclass(frozen=True)
class _Matcher:
    kind: ObjectKind
    pattern: "re.Pattern[str]"
    extract: _Extractor


def _schema_or_default(value: Optional[str]) -> str:
    return value if value is not None else DEFAULT_SCHEMA


def _extract_schema(match: "re.Match[str]") -> _Extracted:
    return match.group(1), match.group(1), None, None


def _extract_extension(match: "re.Match[str]") -> _Extracted:
    return _schema_or_default(match.group(2)), match.group(1), None, None


def _extract_qualified(match: "re.Match[str]") -> _Extracted:
    return _schema_or_default(match.group(1)), match.group(2), None, None


def _extract_sequence(match: "re.Match[str]") -> _Extracted:
    sequence = _qualify(_schema_or_default(match.group(4)), match.group(5))
    return _schema_or_default(match.group(1)), sequence, match.group(2), match.group(3)


def _extract_constraint(match: "re.Match[str]") -> _Extracted:
    return _schema_or_default(match.group(1)), match.group(3), match.group(2), None


def _extract_index(match: "re.Match[str]") -> _Extracted:
    return _schema_or_default(match.group(2)), match.group(1), match.group(3), None


def _create_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"CREATE\s+{keyword}\s+{_QUALIFIED}", re.IGNORECASE)


_MATCHERS: Tuple[_Matcher, ...] = (
    _Matcher(
        ObjectKind.SCHEMA,
        re.compile(rf"CREATE\s+SCHEMA\s+({_IDENT})", re.IGNORECASE),
        _extract_schema,
    ),
    _Matcher(
        ObjectKind.EXTENSION,
        re.compile(
            rf"CREATE\s+EXTENSION\s+(?:IF\s+NOT\s+EXISTS\s+)?({_IDENT})"
            rf"(?:(?:\s+WITH)?(?:\s+SCHEMA)?\s+({_IDENT}))?",
            re.IGNORECASE,
        ),
        _extract_extension,
    ),
    _Matcher(ObjectKind.TYPE, _create_pattern("TYPE"), _extract_qualified),
    _Matcher(ObjectKind.DOMAIN, _create_pattern("DOMAIN"), _extract_qualified),
    _Matcher(
        ObjectKind.FUNCTION,
        _create_pattern(r"(?:OR\s+REPLACE\s+)?FUNCTION"),
        _extract_qualified,
    ),
    _Matcher(
        ObjectKind.PROCEDURE,
        _create_pattern(r"(?:OR\s+REPLACE\s+)?PROCEDURE"),
        _extract_qualified,
    ),
    _Matcher(
        ObjectKind.TABLE,
        _create_pattern(r"(?:UNLOGGED\s+)?TABLE(?:\s+IF\s+NOT\s+EXISTS)?"),
        _extract_qualified,
    ),
    _Matcher(
        ObjectKind.SEQUENCE,
        re.compile(
            rf"ALTER\s+TABLE\s+(?:ONLY\s+)?{_QUALIFIED}"
            rf"\s+ALTER\s+(?:COLUMN\s+)?({_IDENT})\s+ADD\s+"
            r"GENERATED\s+(?:ALWAYS|BY\s+DEFAULT)\s+AS\s+IDENTITY\s+"
            rf"\(\s*SEQUENCE\s+NAME\s+{_QUALIFIED}.*\)\s*;[^;]*\Z",
            re.IGNORECASE | re.DOTALL,
        ),
        _extract_sequence,
    ),
    _Matcher(
        ObjectKind.VIEW,
        _create_pattern(r"(?:OR\s+REPLACE\s+)?(?:RECURSIVE\s+|MATERIALIZED\s+)?VIEW"),
        _extract_qualified,
    ),
    _Matcher(
        ObjectKind.CONSTRAINT,
        re.compile(
            rf"ALTER\s+TABLE\s+(?:ONLY\s+)?{_QUALIFIED}\s+ADD\s+CONSTRAINT\s+({_IDENT})",
            re.IGNORECASE,
        ),
        _extract_constraint,
    ),
    _Matcher(
        ObjectKind.INDEX,
        re.compile(
            rf"CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:({_IDENT})\s+)?"
            rf"ON\s+(?:ONLY\s+)?{_QUALIFIED}",
            re.IGNORECASE,
        ),
        _extract_index,
    ),
)


def classify_statement(statement: str) -> Optional[ClassifiedStatement]:
    """Return the first matching classification, or ``None`` for residual text."""

    for matcher in _MATCHERS:
        match = matcher.pattern.search(statement)
        if not match:
            continue
        schema, name, table, column = matcher.extract(match)
        start = match.start()
        return ClassifiedStatement(
            kind=matcher.kind,
            schema=schema,
            name=name,
            definition=statement[start:],
            residual=statement[:start],
            table=table,
            column=column,
        )
    return None


_TABLE_HEADER_RE = re.compile(
    rf"CREATE\s+(?:UNLOGGED\s+)?TABLE(?:\s+IF\s+NOT\s+EXISTS)?\s+{_QUALIFIED}\s*(?=\()",
    re.IGNORECASE,
)
_SEQUENCE_HEADER_RE = re.compile(
    rf"ALTER\s+TABLE\s+(?:ONLY\s+)?{_QUALIFIED}\s+ALTER\s+(?:COLUMN\s+)?{_IDENT}\s+ADD\s+",
    re.IGNORECASE,
)
# groups: constraint name, definition without the terminating semicolon
_CONSTRAINT_BODY_RE = re.compile(
    rf"ADD\s+CONSTRAINT\s+({_IDENT})\s+(.+);[^;]*\Z",
    re.IGNORECASE | re.DOTALL,
)
_NULL_CLAUSE_RE = re.compile(r"\s+(?:NOT\s+)?NULL\s*\Z", re.IGNORECASE)
_LEADING_WS_RE = re.compile(r"[ \t]*")


@dataclass
class _TableAttachables:
    sequences: List[AttachableStatement] = field(default_factory=list)
    constraints: List[AttachableStatement] = field(default_factory=list)
    indexes: List[AttachableStatement] = field(default_factory=list)


@dataclass
class _ColumnSpan:
    definition: str
    start: int
    end: int


def group_attachables(attachables: Sequence[AttachableStatement]) -> Dict[str, _TableAttachables]:
    grouped: Dict[str, _TableAttachables] = {}
    for item in attachables:
        bucket = grouped.setdefault(item.qualified_table, _TableAttachables())
        if item.kind == ObjectKind.SEQUENCE:
            bucket.sequences.append(item)
        elif item.kind == ObjectKind.CONSTRAINT:
            bucket.constraints.append(item)
        elif item.kind == ObjectKind.INDEX:
            bucket.indexes.append(item)
    return grouped


def attach_to_tables(
    objects: Sequence[ParsedObject],
    attachables: Sequence[AttachableStatement],
) -> None:
    """Inline sequences and constraints into tables and append their indexes.

    Objects are modified in place. Attachables whose table is not among
    ``objects`` are dropped.
    """

    grouped = group_attachables(attachables)
    owners: Set[str] = set()
    for obj in objects:
        if obj.kind not in (ObjectKind.TABLE, ObjectKind.VIEW):
            continue
        key = _qualify(obj.schema, obj.name)
        bucket = grouped.get(key)
        if bucket is None:
            continue
        owners.add(key)
        if bucket.sequences:
            obj.sequences = [seq.definition for seq in bucket.sequences]
            obj.definition = _attach_sequences(obj.definition, bucket.sequences)
        if bucket.constraints:
            obj.constraints = [con.definition for con in bucket.constraints]
            obj.definition = _attach_constraints(obj.definition, bucket.constraints)
        if bucket.indexes:
            obj.indexes = [idx.definition for idx in bucket.indexes]
            obj.definition += "\n\n" + "\n".join(obj.indexes)

    for table in sorted(grouped.keys() - owners):
        logger.debug("No table or view %s; dropping its attachable statements", table)


def _closing_paren(definition: str) -> int:
    terminator = definition.rfind(";")
    end = terminator if terminator != -1 else len(definition)
    return definition.rfind(")", 0, end)


def _find_column(definition: str, column: str) -> Optional[_ColumnSpan]:
    header = _TABLE_HEADER_RE.search(definition)
    if not header:
        return None
    open_paren = header.end()
    close_paren = _closing_paren(definition)
    if close_paren <= open_paren:
        return None

    parts = split_statements(definition[open_paren + 1:close_paren], ",")
    column_re = re.compile(rf"^\s*{re.escape(column)}\s+")
    for index, part in enumerate(parts):
        if column_re.match(part):
            break
    else:
        return None

    text = re.sub(r"[,\s]+\Z", "", part)
    start = open_paren + 1 + sum(len(p) for p in parts[:index])
    end = start + len(text)
    stripped = text.lstrip()
    return _ColumnSpan(stripped, start + len(text) - len(stripped), end)


def _identity_clause(definition: str) -> Optional[str]:
    header = _SEQUENCE_HEADER_RE.search(definition)
    if not header:
        return None
    clause = definition[header.end():]
    clause = re.sub(r"\s*;\s*\Z", "", clause)
    clause = re.sub(r"\s{2,}|\n+", " ", clause)
    return re.sub(r"(?:\(\s+|\s+\))+", lambda m: m.group(0).strip(), clause)


def _attach_sequences(definition: str, sequences: Sequence[AttachableStatement]) -> str:
    for sequence in sequences:
        column = _find_column(definition, sequence.column or "")
        if column is None:
            logger.debug("Column %s not found for sequence %s", sequence.column, sequence.name)
            continue
        clause = _identity_clause(sequence.definition)
        if clause is None:
            logger.debug("Unrecognised identity statement for sequence %s", sequence.name)
            continue
        insert_at = column.end
        null_clause = _NULL_CLAUSE_RE.search(column.definition)
        if null_clause:
            insert_at -= len(column.definition) - null_clause.start()
        definition = f"{definition[:insert_at]} {clause}{definition[insert_at:]}"
    return definition


def _constraint_clause(definition: str) -> Optional[str]:
    match = _CONSTRAINT_BODY_RE.search(definition)
    if not match:
        return None
    return f"CONSTRAINT {match.group(1)} {match.group(2)}"


def _attach_constraints(definition: str, constraints: Sequence[AttachableStatement]) -> str:
    close_paren = _closing_paren(definition)
    if close_paren == -1:
        logger.debug("No closing parenthesis; dropping %d constraint(s)", len(constraints))
        return definition

    clauses: List[str] = []
    for con in constraints:
        clause = _constraint_clause(con.definition)
        if clause is None:
            logger.debug("Unrecognised constraint statement for %s", con.name)
            continue
        clauses.append(clause)
    if not clauses:
        return definition

    last_content = close_paren - 1
    while last_content >= 0 and definition[last_content].isspace():
        last_content -= 1

    separator = ",\n" + detect_indent(definition)
    block = separator + separator.join(clauses)
    return f"{definition[:last_content + 1]}{block}\n{definition[close_paren:]}"


def detect_indent(text: str) -> str:
    """Guess the indentation unit used by ``text``.

    A leading-whitespace run used by more than half of the indented lines wins
    outright. Otherwise the unit is the GCD of the space runs, or of the tab
    runs when no line is space-indented.
    """

    indents = [_LEADING_WS_RE.match(line).group(0) for line in text.split("\n")]
    indents = [ws for ws in indents if ws]
    if not indents:
        return ""

    most_used, count = Counter(indents).most_common(1)[0]
    if count > len(indents) / 2:
        return most_used

    space_runs = [len(ws) for ws in indents if ws.startswith(" ")]
    if space_runs:
        return " " * reduce(gcd, space_runs)
    tab_runs = [len(ws) for ws in indents if ws.startswith("\t")]
    return "\t" * reduce(gcd, tab_runs)


def parse_dump(text: str) -> ParseResult:
    """Split a plain-text ``pg_dump`` schema into per-object definitions."""

    objects: List[ParsedObject] = []
    attachables: List[AttachableStatement] = []
    residual: List[str] = []

    statements = split_statements(text)
    for statement in statements:
        trimmed = statement.strip()
        if not trimmed:
            continue
        classified = classify_statement(trimmed)
        if classified is None:
            residual.append(statement)
            continue
        if classified.kind.is_attachable:
            attachables.append(classified.to_attachable())
        else:
            objects.append(classified.to_object())
        if classified.residual:
            residual.append(classified.residual)

    logger.debug(
        "Classified %d of %d statements (%d attachable)",
        len(objects) + len(attachables),
        len(statements),
        len(attachables),
    )
    attach_to_tables(objects, attachables)
    return ParseResult(objects=objects, residual="\n".join(residual).strip())
