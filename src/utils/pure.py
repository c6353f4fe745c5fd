from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Literal, Optional, Tuple, TypeVar

T = TypeVar("T")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[str]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Generate a Markdown table.

    Args:
        headers: List of column headers, or None to use first row as headers.
        rows: List of rows, each a list of strings.
        aligns: List of alignments ('l', 'c', 'r') for each column.
                Defaults to all left ('l').

    Returns:
        str: Markdown formatted table, or "" when there is nothing to show.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    headers = [str(h) for h in headers]
    num_cols = len(headers)
    if aligns is None:
        aligns = ["l"] * num_cols
    elif len(aligns) != num_cols:
        raise ValueError("Length of aligns must match number of headers.")

    align_map = {"l": ":---", "c": ":---:", "r": "---:"}

    def cell(value) -> str:
        # a pipe inside a cell would split the column
        return str(value).replace("|", "\\|")

    header_line = "| " + " | ".join(headers) + " |"
    align_line = "| " + " | ".join(align_map[a] for a in aligns) + " |"
    row_lines = ["| " + " | ".join(cell(v) for v in row) + " |" for row in rows]

    return "\n".join([header_line, align_line, *row_lines])


def format_money(value: Decimal) -> str:
    return f"${value:,.2f}"


def now_iso() -> str:
    """Current UTC time as the backend writes it, e.g. 2026-03-12T09:15:00.123Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware datetime. Naive values are taken
    as UTC; anything unparseable sorts first.
    """
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def day_label(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day.day} {day:%b %Y}"


def group_by_day(
    items: Iterable[T],
    timestamp_of: Callable[[T], Optional[str]],
    today: Optional[date] = None,
) -> List[Tuple[str, List[T]]]:
    """
    Split already-ordered items into consecutive (label, items) groups by
    local calendar day.
    """
    today = today or datetime.now().date()
    groups: List[Tuple[str, List[T]]] = []
    for item in items:
        day = parse_timestamp(timestamp_of(item)).astimezone().date()
        label = day_label(day, today)
        if groups and groups[-1][0] == label:
            groups[-1][1].append(item)
        else:
            groups.append((label, [item]))
    return groups


def format_time(value: Optional[str]) -> str:
    """HH:MM in local time, or "" when the timestamp is missing."""
    if not value:
        return ""
    return parse_timestamp(value).astimezone().strftime("%H:%M")
