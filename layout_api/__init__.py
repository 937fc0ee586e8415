import os
import re
from pathlib import Path
from typing import Iterator, Tuple

_ENV_LINE_RE = re.compile(r"^(?:export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?P<val>.*)$")


def _env_pairs(text: str) -> Iterator[Tuple[str, str]]:
	"""KEY=VALUE pairs of a dotenv file; comments and malformed lines are skipped."""
	for raw in text.splitlines():
		m = _ENV_LINE_RE.match(raw.strip())
		if m is None:
			continue
		val = m.group("val").strip()
		if len(val) >= 2 and val[0] == val[-1] and val[0] in "\"'":
			val = val[1:-1]
		yield m.group("key"), val


def _load_env_file() -> None:
	# Tests run offline; never pick up a developer's real keys under pytest
	if os.getenv("PYTEST_CURRENT_TEST"):
		return
	path = Path(os.getenv("ENV_FILE", ".env"))
	try:
		text = path.read_text(encoding="utf-8")
	except OSError:
		return
	for key, val in _env_pairs(text):
		os.environ.setdefault(key, val)


_load_env_file()
