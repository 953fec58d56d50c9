"""
Structured RouterOS API sentence.

Word kinds:
  /path/command   – command (first word of a request)
  !re !done ...   – reply type (first word of a response)
  =key=value      – attribute
  .key=value      – API attribute (.tag is kept apart in Sentence.tag)
  ?query          – query word
"""

from dataclasses import dataclass, field
from enum import Enum


class ResultType(Enum):
    NONE = ""
    REPLY = "!re"
    DONE = "!done"
    TRAP = "!trap"
    FATAL = "!fatal"
    EMPTY = "!empty"

    @classmethod
    def from_word(cls, word: str) -> "ResultType":
        try:
            return cls(word)
        except ValueError:
            return cls.NONE


def _split_pair(word: str) -> tuple[str, str]:
    # "=name=value" / ".name=value" -> (name, value); "=flag" -> (flag, "")
    body = word[1:]
    key, sep, value = body.partition("=")
    return key, value


@dataclass
class Sentence:
    command: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    api_attributes: dict[str, str] = field(default_factory=dict)
    queries: list[str] = field(default_factory=list)
    tag: str = ""

    @classmethod
    def from_words(cls, words: list[str]) -> "Sentence":
        s = cls()
        for word in words:
            s.add_word(word)
        return s

    @property
    def result_type(self) -> ResultType:
        return ResultType.from_word(self.command)

    def attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def add_word(self, word: str):
        if not self.command:
            self.command = word
        elif word.startswith(".tag="):
            self.tag = word[5:]
        elif word.startswith("="):
            key, value = _split_pair(word)
            self.attributes[key] = value
        elif word.startswith("."):
            key, value = _split_pair(word)
            self.api_attributes[key] = value
        elif word.startswith("?"):
            self.queries.append(word)
        else:
            # bare word, keep it as a value-less attribute
            self.attributes[word] = ""

    def to_words(self) -> list[str]:
        """Command, attributes, API attributes, queries. The tag is left to the sender."""
        words = [self.command]
        words.extend(f"={k}={v}" for k, v in self.attributes.items())
        words.extend(f".{k}={v}" for k, v in self.api_attributes.items())
        words.extend(self.queries)
        return words

    def clear(self):
        self.command = ""
        self.attributes.clear()
        self.api_attributes.clear()
        self.queries.clear()
        self.tag = ""

    def __bool__(self) -> bool:
        return bool(self.command)
