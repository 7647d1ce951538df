"""Migration of legacy dictionary text files into the dictionary store."""

from __future__ import annotations

import logging
import os

from spamkeeper.dictionary import Dictionary, DictionaryStats, DictionaryType

log = logging.getLogger(__name__)

STOP_WORDS_FILE = "stop-words.txt"
EXCLUDE_TOKENS_FILE = "exclude-tokens.txt"


def _migrate_dict(dictionary: Dictionary, path: str, dict_type: DictionaryType) -> DictionaryStats:
    """Import one file with cleanup and rename it to <path>.loaded; skip a missing file."""
    if not os.path.exists(path):
        log.debug("dictionary file %s not found, skip", path)
        return DictionaryStats()
    try:
        with open(path, encoding="utf-8", newline="") as fh:
            stats = dictionary.import_entries(dict_type, fh, True)
    except OSError as exc:
        raise RuntimeError(f"can't open dictionary file, {exc}") from exc
    except ValueError as exc:
        raise RuntimeError(f"can't load dictionary, {exc}") from exc
    try:
        os.replace(path, path + ".loaded")
    except OSError as exc:
        raise RuntimeError(f"can't rename dictionary file, {exc}") from exc
    return stats


def migrate_dicts(samples_data_path: str, dictionary: Dictionary | None, convert: str = "enabled") -> None:
    """Load legacy stop-words and exclude-tokens files into the dictionary.

    Each file found in samples_data_path replaces the entries of its type and is
    then renamed with a .loaded suffix. Nothing is done when convert is "disabled".
    """
    if convert == "disabled":
        log.debug("dictionary migration disabled")
        return
    if dictionary is None:
        raise ValueError("dictionary db is nil")

    stop_path = os.path.join(samples_data_path, STOP_WORDS_FILE)
    try:
        stats = _migrate_dict(dictionary, stop_path, DictionaryType.STOP_PHRASE)
    except RuntimeError as exc:
        raise RuntimeError(f"can't migrate stop words, {exc}") from exc
    if stats.total_stop_phrases > 0:
        log.info("stop words loaded: %s", stats)

    tokens_path = os.path.join(samples_data_path, EXCLUDE_TOKENS_FILE)
    try:
        stats = _migrate_dict(dictionary, tokens_path, DictionaryType.IGNORED_WORD)
    except RuntimeError as exc:
        raise RuntimeError(f"can't migrate excluded tokens, {exc}") from exc
    if stats.total_ignored_words > 0:
        log.info("excluded tokens loaded: %s", stats)

    if stats.total_ignored_words > 0 or stats.total_stop_phrases > 0:
        log.debug("dictionaries migration done: %s", stats)