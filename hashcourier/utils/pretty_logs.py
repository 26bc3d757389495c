# ====================================================================== #
# hashcourier/utils/pretty_logs.py
# Rich-based pretty logging; plain prints when PRETTY_LOGS is off.
# ====================================================================== #

from __future__ import annotations

from typing import Iterable, List, Tuple, Any

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from hashcourier.config import PRETTY_LOGS, LOG_TOP_N, MASK_ADDRESSES


def mask(address: str) -> str:
    if not MASK_ADDRESSES:
        return address
    if not address or len(address) < 16:
        return address
    return f"{address[:10]}…{address[-4:]}"


class Pretty:
    def __init__(self, enable: bool = True):
        self.enable = bool(enable)
        self.console = Console(log_path=False, highlight=False) if self.enable else None

    # simple log passthrough
    def log(self, msg: str):
        if self.enable and self.console is not None:
            self.console.log(msg)
        else:
            print(msg)

    def kv_panel(self, title: str, items: Iterable[Tuple[str, Any]], style: str = "bold"):
        if self.enable and self.console is not None:
            body = "\n".join([f"[white]{k}[/white]: {v}" for k, v in items])
            self.console.print(Panel(body, title=title, border_style=style))
        else:
            print(f"\n[{title}]")
            for k, v in items:
                print(f"  - {k}: {v}")

    def table(self, title: str, columns: List[str], rows: List[List[Any]], caption: str | None = None,
              limit: int | None = LOG_TOP_N):
        if limit is not None:
            rows = rows[:limit]
        if self.enable and self.console is not None:
            t = Table(title=title, box=box.MINIMAL_DOUBLE_HEAD, show_lines=False)
            for c in columns:
                t.add_column(c)
            for r in rows:
                t.add_row(*[str(x) for x in r])
            if caption:
                t.caption = caption
            self.console.print(t)
        else:
            print(f"\n{title}")
            print(" | ".join(columns))
            for r in rows:
                print(" | ".join([str(x) for x in r]))


pretty = Pretty(enable=PRETTY_LOGS)
