"""
Join uploaded segments back into one playable container.

    python tools/join_segments.py out/ holiday-144p joined.webm

Segments named <prefix>.<seq>.<ext> are concatenated in sequence order.
A gap in the sequence is reported and aborts the join.
"""

import re
import sys
from pathlib import Path


def find_segments(directory: Path, prefix: str) -> list[tuple[int, Path]]:
    pattern = re.compile(re.escape(prefix) + r"\.(\d+)\.[A-Za-z0-9]+$")
    found = []
    for path in directory.iterdir():
        match = pattern.match(path.name)
        if match:
            found.append((int(match.group(1)), path))
    return sorted(found)


def main() -> int:
    if len(sys.argv) != 4:
        print("usage: join_segments.py DIR PREFIX OUTPUT", file=sys.stderr)
        return 2

    directory, prefix, output = Path(sys.argv[1]), sys.argv[2], Path(sys.argv[3])
    segments = find_segments(directory, prefix)
    if not segments:
        print(f"no segments matching {prefix}.<seq>.* in {directory}", file=sys.stderr)
        return 1

    expected = list(range(1, len(segments) + 1))
    actual = [seq for seq, _ in segments]
    if actual != expected:
        print(f"sequence gap: found {actual}", file=sys.stderr)
        return 1

    with output.open("wb") as out:
        for _, path in segments:
            out.write(path.read_bytes())

    total = output.stat().st_size
    print(f"joined {len(segments)} segments -> {output} ({total} bytes)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
