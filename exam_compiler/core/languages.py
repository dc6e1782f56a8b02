from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Language:
    key: str
    api_name: str
    version: str
    comment_marker: str
    template: str | None


_LANGUAGES: dict[str, Language] = {
    lang.key: lang
    for lang in (
        Language("c", "c", "10.2.0", "//", None),
        Language(
            "c++",
            "cpp",
            "10.2.0",
            "//",
            '#include <iostream>\n\nint main() {\n    std::cout << "Hello World!";\n    return 0;\n}',
        ),
        Language(
            "java",
            "java",
            "15.0.2",
            "//",
            "public class Main {\n"
            "    public static void main(String[] args) {\n"
            '        System.out.println("Hello World");\n'
            "    }\n"
            "}",
        ),
        Language("python", "python", "3.10.0", "#", 'print("Hello World")'),
        Language("javascript", "javascript", "18.15.0", "//", 'console.log("Hello World");'),
    )
}

_ALIASES: dict[str, str] = {
    "cpp": "c++",
    "python3": "python",
    "py": "python",
    "js": "javascript",
    "nodejs": "javascript",
    "node": "javascript",
}


class UnknownLanguage(ValueError):
    pass


def resolve_language(name: str) -> Language:
    """Look up a language by key or alias, ignoring case."""
    key = name.strip().lower()
    key = _ALIASES.get(key, key)
    try:
        return _LANGUAGES[key]
    except KeyError:
        raise UnknownLanguage(f"Unsupported language: {name}") from None


def supported_languages() -> list[str]:
    return list(_LANGUAGES)
