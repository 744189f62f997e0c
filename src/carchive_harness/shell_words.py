"""Shell-style word splitting for compiler flag strings.

The toolchain reports the C compiler flags as one string (``go env
GOGCCFLAGS``). split_flags() turns it back into the argument list a POSIX
shell would build from it: whitespace separates words, single and double
quotes suppress splitting, backslash escapes the next character except
inside single quotes. There is no globbing, variable expansion or command
substitution.
"""

_QUOTES = ("'", '"')


def split_flags(text: str) -> tuple[str, ...]:
    """Split a flags string into words.

    Quote characters delimit regions and are not kept. An empty quoted
    region still produces a word. An unterminated quote is closed at the
    end of input and a trailing lone backslash is kept as is.

    Args:
        text: Raw flags string

    Returns:
        Words in order; empty for empty or all-whitespace input

    Example:
        >>> split_flags('-o "a b" -g')
        ('-o', 'a b', '-g')
    """
    words: list[str] = []
    current: list[str] = []
    quote: str | None = None
    backslash = False
    in_word = False

    for c in text:
        if backslash:
            current.append(c)
            backslash = False
            continue

        if quote is None and c.isspace():
            if in_word:
                words.append("".join(current))
                current = []
                in_word = False
            continue

        in_word = True
        if quote is None and c in _QUOTES:
            quote = c
        elif quote is not None and c == quote:
            quote = None
        elif quote != "'" and c == "\\":
            backslash = True
        else:
            current.append(c)

    if backslash:
        current.append("\\")
    if in_word:
        words.append("".join(current))
    return tuple(words)
