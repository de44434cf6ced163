"""Ignore-file parsing and matching.

The repository's ignore file (``.gitignore`` at the tree root) is parsed into
an ordered list of :class:`IgnoreRule`. Rules are evaluated in file order and
the last matching rule decides, so a later ``!pattern`` re-includes a path an
earlier pattern excluded.

Pattern translation to globs:

* ``/build/out.bin`` is anchored to the root: ``build/out.bin``
* ``*.log`` matches at any depth: ``**/*.log``
* ``cache/`` covers the directory and everything below it: ``**/cache/**``

Each glob is matched with pathspec's gitwildmatch implementation, so
character classes and backslash escapes behave as they do for git.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from pathspec.patterns import GitWildMatchPattern

from ..utils import to_posix_path

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".gitignore"


def translate_pattern(pattern: str) -> str:
    """Translate an ignore-file pattern to a glob relative to the tree root.

    Args:
        pattern: Pattern text without a leading ``!``

    Returns:
        Equivalent glob pattern

    Examples:
        >>> translate_pattern("*.log")
        '**/*.log'
        >>> translate_pattern("/assets/video.mp4")
        'assets/video.mp4'
        >>> translate_pattern("node_modules/")
        '**/node_modules/**'
    """
    if pattern.startswith("/"):
        glob = pattern[1:]
    else:
        glob = f"**/{pattern}"

    if glob.endswith("/"):
        glob = f"{glob}**"

    return glob


def escape_pattern(relative_path: str) -> str:
    """Escape a file path so it can be written as a literal ignore pattern.

    Glob metacharacters and a leading ``#`` or ``!`` would otherwise turn the
    line into a character class, a comment or a negation.

    Examples:
        >>> escape_pattern("assets/video[1].mp4")
        'assets/video\\\\[1\\\\].mp4'
        >>> escape_pattern("#take.mp4")
        '\\\\#take.mp4'
    """
    return GitWildMatchPattern.escape(to_posix_path(relative_path))


def _compile(glob: str) -> GitWildMatchPattern:
    # Globs are root-relative. The leading slash stops pathspec from matching
    # a single-segment glob at any depth.
    compiled = GitWildMatchPattern(f"/{glob}")
    if compiled.include is None:
        raise ValueError(f"pattern {glob!r} matches nothing")
    return compiled


@dataclass(frozen=True)
class IgnoreRule:
    """A single rule from an ignore file."""

    pattern: str
    """Glob pattern matched against root-relative paths"""

    negated: bool = False
    """True for ``!pattern`` lines, which re-include matching paths"""

    source: str = field(default="", compare=False)
    """Original pattern text as written in the ignore file"""

    _matcher: GitWildMatchPattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # GitWildMatchPatternError is a ValueError
        object.__setattr__(self, "_matcher", _compile(self.pattern))

    @classmethod
    def from_line(cls, line: str) -> Optional["IgnoreRule"]:
        """Build a rule from one line of an ignore file.

        Args:
            line: Raw line

        Returns:
            The rule, or None for blank lines and comments

        Raises:
            ValueError: If the pattern cannot be translated to a glob
        """
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return None

        negated = stripped.startswith("!")
        text = stripped[1:] if negated else stripped
        if not text or text == "/":
            raise ValueError(f"empty pattern in line {line!r}")

        try:
            return cls(pattern=translate_pattern(text), negated=negated, source=stripped)
        except ValueError as e:
            raise ValueError(f"invalid pattern {text!r}: {e}") from e

    def matches(self, relative_path: str) -> bool:
        """Check whether a root-relative path matches this rule's glob."""
        return self._matcher.match_file(to_posix_path(relative_path)) is not None


def parse(text: str) -> list[IgnoreRule]:
    """Parse ignore-file text into an ordered list of rules.

    Invalid patterns are logged and skipped; they never abort the parse.

    Args:
        text: Ignore file contents

    Returns:
        Rules in file order
    """
    rules: list[IgnoreRule] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        try:
            rule = IgnoreRule.from_line(line)
        except ValueError as e:
            logger.warning(f"Skipping ignore pattern on line {lineno}: {e}")
            continue
        if rule is not None:
            rules.append(rule)
    return rules


def is_ignored(rules: list[IgnoreRule], relative_path: str) -> bool:
    """Evaluate rules against a root-relative path.

    Every rule is checked in order: a plain match marks the path ignored, a
    negated match clears the mark. A path matching no rule is not ignored.

    Args:
        rules: Rules in file order
        relative_path: Path relative to the tree root (either separator)

    Returns:
        True if the path is ignored

    Examples:
        >>> rules = parse("*.log\\n!important.log\\n")
        >>> is_ignored(rules, "important.log")
        False
        >>> is_ignored(rules, "other.log")
        True
    """
    path = to_posix_path(relative_path).lstrip("/")
    ignored = False
    for rule in rules:
        if rule.matches(path):
            ignored = not rule.negated
    return ignored


def load_ignore_file(path: Path) -> list[IgnoreRule]:
    """Read and parse an ignore file.

    Returns an empty list when the file does not exist or cannot be read.
    """
    if not path.exists():
        return []
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Could not read ignore file {path}: {e}")
        return []
    return parse(text)


class IgnoreFileManager:
    """Owns the ignore file at the root of a tree.

    Rules from ``load_cli_patterns`` (extra patterns from configuration) are
    evaluated before the file's rules, so the file can negate them.

    Examples:
        >>> manager = IgnoreFileManager(Path("/repo"))  # doctest: +SKIP
        >>> manager.add_rule("assets/video.mp4", comment="Managed by ditrive")
        True
        >>> manager.is_ignored("assets/video.mp4")
        True
    """

    def __init__(self, base_path: Path, file_name: str = IGNORE_FILE_NAME):
        """Initialize the manager and load the ignore file.

        Args:
            base_path: Root of the tree
            file_name: Name of the ignore file inside ``base_path``
        """
        self.base_path = base_path
        self.ignore_file = base_path / file_name
        self._extra_rules: list[IgnoreRule] = []
        self._file_rules: list[IgnoreRule] = []
        self.reload()

    @property
    def rules(self) -> list[IgnoreRule]:
        """All rules in evaluation order."""
        return self._extra_rules + self._file_rules

    def reload(self) -> None:
        """Rebuild the in-memory rules from the ignore file."""
        self._file_rules = load_ignore_file(self.ignore_file)
        logger.debug(
            f"Loaded {len(self._file_rules)} ignore rule(s) from {self.ignore_file}"
        )

    def load_cli_patterns(self, patterns: list[str]) -> None:
        """Add patterns that apply ahead of the ignore file.

        Args:
            patterns: Patterns in ignore-file syntax (e.g. ``["*.tmp"]``)
        """
        self._extra_rules.extend(parse("\n".join(patterns)))

    def is_ignored(self, path: Union[str, Path]) -> bool:
        """Check whether a path is ignored.

        Args:
            path: Absolute path inside the tree, or a root-relative path

        Returns:
            True if ignored; paths outside the tree are never ignored
        """
        if isinstance(path, Path) and path.is_absolute():
            try:
                relative_path = path.relative_to(self.base_path).as_posix()
            except ValueError:
                return False
        else:
            relative_path = to_posix_path(str(path))
        return is_ignored(self.rules, relative_path)

    def _read_text(self) -> str:
        if not self.ignore_file.exists():
            return ""
        with open(self.ignore_file, encoding="utf-8", newline="") as f:
            return f.read()

    def has_pattern(self, pattern: str) -> bool:
        """Check whether the literal pattern line is already in the file."""
        return any(line.strip() == pattern for line in self._read_text().splitlines())

    def add_rule(self, pattern: str, comment: Optional[str] = None) -> bool:
        """Append a pattern to the ignore file.

        The call is idempotent: nothing is written when the literal pattern
        is already present. Existing lines and comments are preserved.

        Args:
            pattern: Pattern line to append
            comment: Optional comment written on the line above

        Returns:
            True if the file was modified
        """
        content = self._read_text()
        if any(line.strip() == pattern for line in content.splitlines()):
            logger.debug(f"Pattern '{pattern}' already in {self.ignore_file}")
            return False

        if content and not content.endswith("\n"):
            content += "\n"
        if comment:
            content += comment if comment.startswith("#") else f"# {comment}"
            content += "\n"
        content += f"{pattern}\n"

        with open(self.ignore_file, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        logger.debug(f"Added pattern '{pattern}' to {self.ignore_file}")

        self.reload()
        return True
