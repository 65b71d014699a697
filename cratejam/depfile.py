import os
import re

from cratejam.log import dprint

_token = re.compile(r'(?:\\.|[^\s\\])+')

def uniquify(seq):
    # Order preserving
    seen = set()
    return [x for x in seq if x not in seen and not seen.add(x)]

def _unescape(token):
    return re.sub(r'\\(.)', r'\1', token).replace('$$', '$')

def parse_depfile(text):
    """Parse a make-style dependency record.

    Returns the prerequisites of every rule in the record, in order of
    appearance, or None if the text doesn't look like a dependency record.
    Compilers append empty rules for every input (so deleted headers don't
    break make), those contribute nothing.
    """
    deps = []
    rules = 0
    for line in text.replace("\\\r\n", " ").replace("\\\n", " ").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        tokens = _token.findall(line)
        for i, token in enumerate(tokens):
            if token.endswith(":") and not token.endswith("\\:"):
                break
        else:
            return None

        if i == 0 and token == ":":
            return None

        rules += 1
        deps.extend(_unescape(dep) for dep in tokens[i+1:])

    if not rules:
        return None

    return uniquify(deps)

def read_depfile(filename):
    try:
        with open(filename, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        dprint("warning", "warning: cannot read dependency record %s (%s), will rebuild." % (filename, e))
        return None

    deps = parse_depfile(text)
    if deps is None:
        dprint("warning", "warning: malformed dependency record %s, will rebuild." % filename)
    return deps

def discovered_inputs(filename, relpath=""):
    """Return the inputs recorded in filename as root relative names.

    relpath is the directory the compiler ran in, relative to the root
    directory.  Returns None if the record is missing or malformed, which
    means the artifact has to be rebuilt.
    """
    deps = read_depfile(filename)
    if deps is None:
        return None

    result = []
    for dep in deps:
        if os.path.isabs(dep):
            result.append(os.path.normpath(dep))
        else:
            result.append(os.path.normpath(os.path.join(relpath, dep)))

    dprint("depends", "... %s records %s" % (filename, " ".join(result)))
    return result
