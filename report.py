import csv
import io
from typing import Iterable, TextIO

from models import AccountSnapshot

HEADER = ["client", "available", "held", "total", "locked"]


def write_report(snapshots: Iterable[AccountSnapshot], stream: TextIO) -> None:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(HEADER)
    for snapshot in snapshots:
        writer.writerow([
            snapshot.client,
            f"{snapshot.available:.4f}",
            f"{snapshot.held:.4f}",
            f"{snapshot.total:.4f}",
            str(snapshot.locked).lower(),
        ])


def render_report(snapshots: Iterable[AccountSnapshot]) -> str:
    buffer = io.StringIO()
    write_report(snapshots, buffer)
    return buffer.getvalue()
