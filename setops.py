#!/usr/bin/env python3
"""
setops.py - Union, difference, intersection and symmetric difference of
two sets of text lines.

Lines are compared by a key derived from each line (optionally its basename,
without its extension, or cut at a separator) but printed as given. Each set
is sorted and deduplicated by key before the operation runs.

Usage:
    setops [-b|-B] [-e|-E] [-n] [-o] [-v] [-F sep] [-f output_file] [-C]
           [-1 file] [-2 file] [-P 1|2] [-S summary_file]
           [--config setops.ini] [--log-db setops.db]
           [e1 e2 ...] -u|-i|-d|-s [e1 e2 ...]

    Elements before the operator go to set 1, elements after it to set 2.
    -q X adds X as an element even if it looks like an option, including
    -h, which otherwise prints this help.
    -1/-2 read a file (- for stdin), -P reads the clipboard into set 1 or 2.
    -b/-B basenames on/off, -e/-E ignore extensions on/off, -F compare up to
    the first sep ('null' for none), -o keep input order, -n separate output
    with spaces, -f write to a file, -C copy the result to the clipboard,
    -S write a YAML run summary (- for stderr), -v/-vv diagnostics.

setops.ini format (all keys optional, command line wins):
    [setops]
    basenames = yes
    extensions = no
    separator = :
    maintain_order = no
    terminator = newline        # or: space
    verbose = 0
    log_db = ~/setops.db
"""

import configparser
import sqlite3
import sys
from pathlib import Path

import pyperclip
import yaml

from db_logger import DBLogger
from set_algebra import (
    DIFFERENCE, INTERSECTION, SYMMETRIC_DIFFERENCE, UNION, SetAlgebra, summarize,
)
from set_collection import KeyOptions, SetCollection

VERSION  = "1.3"
INI_NAME = "setops.ini"
SECTION  = "setops"

USAGE = (
    "Usage: setops [-b|-B] [-e|-E] [-n] [-o] [-v] [-F sep] [-f output_file] [-C]\n"
    "              [-1 file] [-2 file] [-P 1|2] [-S summary_file]\n"
    "              [--config ini] [--log-db path]\n"
    "              [e1 e2 ...] -u|-i|-d|-s [e1 e2 ...]\n"
    "Use -q X to add an element X that looks like an option (-q -h adds \"-h\")."
)

TERMINATORS = {"newline": "\n", "space": " "}

OPERATOR_FLAGS = {
    "-u": UNION,
    "-d": DIFFERENCE,
    "-i": INTERSECTION,
    "-s": SYMMETRIC_DIFFERENCE,
}

# flag -> (setting, value)
SWITCHES = {
    "-b": ("basenames", True),
    "-B": ("basenames", False),
    "-e": ("extensions", True),
    "-E": ("extensions", False),
    "-o": ("maintain_order", True),
    "-n": ("terminator", " "),
}


class UsageError(ValueError):
    pass


class ConfigError(ValueError):
    pass


class InputError(OSError):
    pass


class OutputError(OSError):
    pass


# ─── INI loader ──────────────────────────────────────────────────────────────

def find_ini(explicit: str = None):
    """--config if given, else ./setops.ini, else ~/.setops.ini, else None."""
    if explicit:
        return Path(explicit).expanduser()
    for candidate in (Path.cwd() / INI_NAME, Path.home() / f".{INI_NAME}"):
        if candidate.exists():
            return candidate
    return None


def load_ini(path) -> configparser.ConfigParser:
    # values are literal: "%" is a valid separator and may appear in paths
    cfg = configparser.ConfigParser(interpolation=None)
    if path is None:
        return cfg
    if not Path(path).exists():
        raise ConfigError(f"config file \"{path}\" not found")
    try:
        cfg.read(path, encoding="utf-8")
    except configparser.Error as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    return cfg


def parse_separator(text):
    """Single character, or None for '' / 'null' (any case)."""
    if text is None or text == "" or text.lower() == "null":
        return None
    if len(text) > 1:
        raise UsageError(f"separator must be one character or 'null', got {text!r}")
    return text


def load_settings(cfg: configparser.ConfigParser) -> dict:
    try:
        settings = {
            "basenames":      cfg.getboolean(SECTION, "basenames", fallback=False),
            "extensions":     cfg.getboolean(SECTION, "extensions", fallback=False),
            "maintain_order": cfg.getboolean(SECTION, "maintain_order", fallback=False),
            "verbose":        cfg.getint(SECTION, "verbose", fallback=0),
            "separator":      parse_separator(cfg.get(SECTION, "separator", fallback="null")),
            "log_db":         cfg.get(SECTION, "log_db", fallback="").strip() or None,
        }
        terminator = cfg.get(SECTION, "terminator", fallback="newline").strip().lower()
    except (ValueError, configparser.Error) as exc:
        raise ConfigError(f"[{SECTION}] {exc}") from exc

    if terminator not in TERMINATORS:
        raise ConfigError(f"[{SECTION}] terminator must be one of {', '.join(TERMINATORS)}")
    settings["terminator"] = TERMINATORS[terminator]
    return settings


def key_options(settings: dict) -> KeyOptions:
    return KeyOptions(
        use_basenames=settings["basenames"],
        ignore_extensions=settings["extensions"],
        separator=settings["separator"],
    )


# ─── Command line ─────────────────────────────────────────────────────────────

def parse_args(argv: list) -> dict:
    """
    Scan argv left to right. Order matters: literals and -1/-2/-P inputs are
    queued as feeds in the order given, and an operator flag switches the
    target of later literals to set 2.

    Returns a dict:
        {operation, feeds: [(set_number, kind, arg)], overrides, verbose,
         output, copy, summary, config, log_db, help}
    """
    inv = {
        "operation": None,
        "feeds":     [],
        "overrides": {},
        "verbose":   0,
        "output":    "-",
        "copy":      False,
        "summary":   None,
        "config":    None,
        "log_db":    None,
        "help":      False,
    }
    target = 1
    i = 0

    def take(flag: str) -> str:
        nonlocal i
        i += 1
        if i >= len(argv):
            raise UsageError(f"option {flag} requires an argument")
        return argv[i]

    while i < len(argv):
        arg = argv[i]
        if arg == "-q":
            inv["feeds"].append((target, "literal", take(arg)))
        elif arg in OPERATOR_FLAGS:
            inv["operation"] = OPERATOR_FLAGS[arg]
            target = 2
        elif arg in SWITCHES:
            name, value = SWITCHES[arg]
            inv["overrides"][name] = value
        elif arg == "-F":
            inv["overrides"]["separator"] = parse_separator(take(arg))
        elif arg == "-f":
            inv["output"] = take(arg)
        elif arg == "-C":
            inv["copy"] = True
        elif arg == "-v":
            inv["verbose"] += 1
        elif arg in ("-1", "-2"):
            inv["feeds"].append((int(arg[1]), "file", take(arg)))
        elif arg == "-P":
            number = take(arg)
            if number not in ("1", "2"):
                raise UsageError(f"-P takes 1 or 2, got {number!r}")
            inv["feeds"].append((int(number), "clipboard", None))
        elif arg == "-S":
            inv["summary"] = take(arg)
        elif arg == "--config":
            inv["config"] = take(arg)
        elif arg == "--log-db":
            inv["log_db"] = take(arg)
        elif arg in ("-h", "--help"):
            inv["help"] = True
        else:
            inv["feeds"].append((target, "literal", arg))
        i += 1

    return inv


# ─── Input feeds ──────────────────────────────────────────────────────────────

def decode(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def encode(text: str) -> bytes:
    try:
        return text.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        # lone surrogates, e.g. from clipboard text
        return text.encode("utf-8", "surrogatepass")


def read_lines(stream):
    """Yield lines of a binary stream without their '\\n'. Only '\\n' ends a line."""
    for raw in stream:
        if raw.endswith(b"\n"):
            raw = raw[:-1]
        yield decode(raw)


def split_lines(text: str) -> list:
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def read_set_from_file(collection: SetCollection, filename: str) -> int:
    before = collection.raw_count
    if filename == "-":
        collection.extend(read_lines(sys.stdin.buffer))
    else:
        try:
            stream = open(filename, "rb")
        except OSError as exc:
            raise InputError(f"Unable to open file \"{filename}\"") from exc
        with stream:
            collection.extend(read_lines(stream))
    return collection.raw_count - before


def read_set_from_clipboard(collection: SetCollection) -> int:
    before = collection.raw_count
    collection.extend(split_lines(pyperclip.paste() or ""))
    return collection.raw_count - before


# ─── Output sinks ─────────────────────────────────────────────────────────────

def write_values(values, output: str, terminator: str) -> int:
    """
    Write each value followed by terminator. Returns the number written.
    Everything is encoded before the sink is opened, so a failure leaves no
    partial output behind.
    """
    term    = encode(terminator)
    payload = [encode(value) + term for value in values]
    if output == "-":
        sink = sys.stdout.buffer
    else:
        try:
            sink = open(output, "wb")
        except OSError as exc:
            raise OutputError(f"unable to open file \"{output}\" for writing.") from exc

    try:
        for line in payload:
            sink.write(line)
        sink.flush()
    finally:
        if output != "-":
            sink.close()
    return len(payload)


def copy_values(values, terminator: str) -> int:
    values = list(values)
    pyperclip.copy("".join(v + terminator for v in values))
    return len(values)


def write_summary(summary: dict, destination: str):
    text = yaml.dump(
        summary,
        allow_unicode=True,
        default_flow_style=False,
        sort_keys=False,
        indent=2,
    )
    if destination == "-":
        sys.stderr.write(text)
        return
    try:
        Path(destination).write_text(text, encoding="utf-8")
    except OSError as exc:
        raise OutputError(f"unable to open file \"{destination}\" for writing.") from exc


# ─── Diagnostics ──────────────────────────────────────────────────────────────

def print_set(collection: SetCollection, stream=None):
    stream = stream or sys.stderr
    print(f"\n{collection.name}\n", file=stream)
    print(f"{'Index':>6}\t{'Member':>32} {'Compared As':>32}", file=stream)
    for index, member in enumerate(collection):
        print(f"{index:>6}\t{member.value:>32} {member.key:>32}", file=stream)
    print("\n", file=stream)


def trace_membership(target: SetCollection, member, result: bool):
    print(
        f"is_a_member: set {target.name}, member {member.value}({member.key}), "
        f"returned {int(result)}",
        file=sys.stderr,
    )


# ─── Run ──────────────────────────────────────────────────────────────────────

def execute(inv: dict, settings: dict, log) -> int:
    """Build both sets, run the operation and emit the result. Returns lines emitted."""
    operation = inv["operation"]
    if operation is None:
        raise UsageError("no operation selected (-u, -d, -i or -s)")

    options = key_options(settings)
    sets = {1: SetCollection("Set 1", options), 2: SetCollection("Set 2", options)}

    for number, kind, arg in inv["feeds"]:
        target = sets[number]
        if kind == "literal":
            target.append(arg)
        elif kind == "file":
            added  = read_set_from_file(target, arg)
            source = "stdin" if arg == "-" else arg
            log(f"Read {added} line(s) from {source} into {target.name}")
        else:
            added = read_set_from_clipboard(target)
            log(f"Read {added} line(s) from clipboard into {target.name}")

    set1, set2 = sets[1], sets[2]
    for s in (set1, set2):
        s.normalize()
        log(f"{s.name}: {len(s)} distinct of {s.raw_count} read")

    if settings["verbose"]:
        print_set(set1)
        print_set(set2)

    algebra = SetAlgebra(
        set1, set2,
        maintain_order=settings["maintain_order"],
        trace=trace_membership if settings["verbose"] > 1 else None,
    )
    values = algebra.run(operation)

    if inv["copy"]:
        emitted = copy_values(values, settings["terminator"])
        log(f"{emitted} line(s) copied to clipboard", "ok", operation)
    else:
        emitted = write_values(values, inv["output"], settings["terminator"])
        sink = "stdout" if inv["output"] == "-" else inv["output"]
        log(f"{emitted} line(s) written to {sink}", "ok", operation)

    if inv["summary"]:
        write_summary(summarize(operation, algebra, emitted), inv["summary"])
    return emitted


FATAL_ERRORS = (ValueError, OSError, MemoryError, pyperclip.PyperclipException)


def run(argv: list) -> int:
    inv = parse_args(argv)
    if inv["help"]:
        print(USAGE)
        return 0

    settings = load_settings(load_ini(find_ini(inv["config"])))
    settings.update(inv["overrides"])
    settings["verbose"] += inv["verbose"]

    log_db = inv["log_db"] or settings["log_db"]
    logger = None
    if log_db:
        try:
            logger = DBLogger(log_db, argv=" ".join(argv))
        except sqlite3.Error as exc:
            raise ConfigError(f"cannot open run log \"{log_db}\": {exc}") from exc

    def _log(message: str, tag: str = "info", operation: str = ""):
        if logger:
            logger.log(message, tag, operation)

    try:
        execute(inv, settings, _log)
    except FATAL_ERRORS as exc:
        _log(f"{type(exc).__name__}: {exc}", "err", inv["operation"] or "")
        raise
    finally:
        if logger:
            logger.stop()
            if logger.write_errors:
                print(
                    f"WARNING: {logger.write_errors} log entr(ies) could not be written "
                    f"to \"{logger.db_path}\"",
                    file=sys.stderr,
                )
    return 0


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    try:
        return run(argv)
    except UsageError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
    except MemoryError:
        print("Out of memory.", file=sys.stderr)
    except (ConfigError, UnicodeError, OSError, pyperclip.PyperclipException) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
