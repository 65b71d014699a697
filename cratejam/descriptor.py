import json
import os
import re
from collections import namedtuple

from cratejam.errors import ConfigurationError

CONFIG_FILE = "config.json"
STAMP_FILE = "build-stamp"
OPTIONS_FILE = "build-options"

LIFECYCLE_TARGETS = ("all", "clean", "distclean", "install", "install-strip", "check")

_reserved = set(LIFECYCLE_TARGETS) | { CONFIG_FILE, STAMP_FILE, OPTIONS_FILE }

_identifier = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

Dependency = namedtuple("Dependency", ["name", "path"])
Unit = namedtuple("Unit", ["name", "source"])
InstallPaths = namedtuple("InstallPaths", ["prefix", "bindir", "libdir"])

def crate_name(stem):
    name = re.sub(r'[^0-9A-Za-z_]', '_', stem)
    if not name or name[0].isdigit():
        name = "_" + name
    return name

def unit_name(source):
    return crate_name(os.path.splitext(os.path.basename(source))[0])

_fields = ["name", "version", "edition", "source", "output", "compiler", "flags",
           "extra_flags", "features", "dependencies", "plugins", "subdirs",
           "binaries", "tests", "install"]

class BuildDescriptor(namedtuple("BuildDescriptor", _fields)):
    __slots__ = ()

    @property
    def harness(s):
        return "%s-test" % s.name

    def artifacts(s):
        """Every artifact this directory produces, library first."""
        return [s.output] + [b.name for b in s.binaries] + [s.harness] + [t.name for t in s.tests]

    def to_dict(s):
        d = s._asdict()
        d["dependencies"] = [dep._asdict() for dep in s.dependencies]
        d["plugins"] = [dep._asdict() for dep in s.plugins]
        d["binaries"] = [unit._asdict() for unit in s.binaries]
        d["tests"] = [unit._asdict() for unit in s.tests]
        d["install"] = s.install._asdict()
        return d

def _list(directory, d, key):
    value = d.get(key) or []
    if not isinstance(value, list):
        raise ConfigurationError(directory, "\"%s\" must be a list" % key)
    return value

def _str(directory, d, key, default=None):
    value = d.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ConfigurationError(directory, "\"%s\" must be a string" % key)
    return value

def _install(directory, d):
    install = d.get("install") or {}
    if not isinstance(install, dict):
        raise ConfigurationError(directory, "\"install\" must be a mapping")
    prefix = _str(directory, install, "prefix", "/usr/local")
    return InstallPaths(prefix,
                        _str(directory, install, "bindir", os.path.join(prefix, "bin")),
                        _str(directory, install, "libdir", os.path.join(prefix, "lib")))

def _str_list(directory, d, key):
    value = d.get(key) or []
    if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
        raise ConfigurationError(directory, "\"%s\" must be a list of strings" % key)
    return list(value)

def _deps(directory, d, key):
    result = []
    for entry in _list(directory, d, key):
        if isinstance(entry, dict) and isinstance(entry.get("name"), str):
            path = entry.get("path")
            if path is not None and not isinstance(path, str):
                raise ConfigurationError(directory, "invalid path for %s \"%s\"" % (key, entry["name"]))
            result.append(Dependency(entry["name"], path or None))
        else:
            raise ConfigurationError(directory, "invalid %s entry %r" % (key, entry))
    return result

def _units(directory, d, key):
    result = []
    for entry in _list(directory, d, key):
        if isinstance(entry, str):
            entry = { "source": entry }
        if not isinstance(entry, dict) or not isinstance(entry.get("source"), str):
            raise ConfigurationError(directory, "invalid %s entry %r" % (key, entry))
        name = entry.get("name") or unit_name(entry["source"])
        if not isinstance(name, str):
            raise ConfigurationError(directory, "invalid %s name %r" % (key, name))
        result.append(Unit(crate_name(name), entry["source"]))
    return result

def from_dict(d, directory="."):
    if not isinstance(d, dict):
        raise ConfigurationError(directory, "resolved configuration is not a mapping")

    for key in ("name", "source"):
        if not isinstance(d.get(key), str) or not d.get(key):
            raise ConfigurationError(directory, "missing \"%s\"" % key)

    name = d["name"]
    if not _identifier.match(name):
        raise ConfigurationError(directory, "invalid crate name \"%s\"" % name)

    compiler = _str(directory, d, "compiler", "rustc")

    descriptor = BuildDescriptor(
        name=name,
        version=_str(directory, d, "version", "0.0.0"),
        edition=_str(directory, d, "edition"),
        source=d["source"],
        output=_str(directory, d, "output", "lib%s.rlib" % name),
        compiler=compiler,
        flags=_str_list(directory, d, "flags"),
        extra_flags=_str_list(directory, d, "extra_flags"),
        features=sorted(set(_str_list(directory, d, "features"))),
        dependencies=_deps(directory, d, "dependencies"),
        plugins=_deps(directory, d, "plugins"),
        subdirs=_str_list(directory, d, "subdirs"),
        binaries=_units(directory, d, "binaries"),
        tests=_units(directory, d, "tests"),
        install=_install(directory, d),
    )
    validate(descriptor, directory)
    return descriptor

def validate(descriptor, directory="."):
    seen = {}
    for kind, units in (("binary", descriptor.binaries), ("test", descriptor.tests)):
        for unit in units:
            if unit.name in _reserved:
                raise ConfigurationError(directory, "%s \"%s\" uses a reserved name" % (kind, unit.name))
            if unit.name in seen:
                raise ConfigurationError(directory, "%s \"%s\" (%s) collides with %s \"%s\" (%s)" %
                        (kind, unit.name, unit.source, seen[unit.name][0], unit.name, seen[unit.name][1]))
            seen[unit.name] = (kind, unit.source)

    for artifact in (descriptor.output, descriptor.harness):
        if artifact in seen or artifact in _reserved:
            raise ConfigurationError(directory, "artifact \"%s\" collides with another target" % artifact)

    if descriptor.output == descriptor.harness:
        raise ConfigurationError(directory, "library output collides with the test harness")

    names = set()
    for dep in descriptor.dependencies + descriptor.plugins:
        if dep.name in names:
            raise ConfigurationError(directory, "dependency \"%s\" declared twice" % dep.name)
        names.add(dep.name)

    for subdir in descriptor.subdirs:
        if os.path.isabs(subdir) or os.path.normpath(subdir).startswith(".."):
            raise ConfigurationError(directory, "subdirectory \"%s\" is outside of the tree" % subdir)

def load(directory):
    filename = os.path.join(directory, CONFIG_FILE)
    try:
        with open(filename, encoding="utf-8") as f:
            d = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(directory, "%s not found, run cratejam-configure first" % CONFIG_FILE)
    except (OSError, ValueError) as e:
        raise ConfigurationError(directory, "cannot read %s: %s" % (CONFIG_FILE, e))

    return from_dict(d, directory)

def save(directory, descriptor):
    filename = os.path.join(directory, CONFIG_FILE)
    tmp = filename + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(descriptor.to_dict(), f, indent=2, sort_keys=True)
        f.write("\n")
    os.replace(tmp, filename)
    return filename
