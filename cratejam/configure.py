import argparse
import os
import shlex
import sys
import traceback

from cratejam import __version__
from cratejam import descriptor as _descriptor
from cratejam import log
from cratejam.errors import ConfigurationError, CratejamError
from cratejam.featureexpr import evaluate
from cratejam.log import dprint

BUILDFILE = "build.py"

class Buildfile(object):
    """Declarations collected from one build.py.

    A build.py is plain python, executed with these functions in scope:

        crate("lc_crypto", source="src/lib.rs", version="0.1.0", edition="2018")
        binary("src/bin/lc-digest.rs", when="std")
        test("tests/digest.rs")
        subdir("vendor/bytemuck")
        dependency("bytemuck", subdir="vendor/bytemuck")
        plugin("zeroize_derive", path="/usr/lib/rust/libzeroize_derive.so")
        feature("hardware-rand", option="hardware-random")
        option("native-instructions", default="native", flag="-C target-cpu=%s")
        flags("-C", "opt-level=2")
    """

    def __init__(s, directory):
        s.directory = directory
        s.crate_decl = None
        s.binaries = []
        s.tests = []
        s.subdirs = []
        s.dependencies = []
        s.plugins = []
        s.features = []
        s.options = []
        s.extra_flags = []

    def crate(s, name, source="src/lib.rs", version=None, edition=None, output=None, compiler=None):
        s.crate_decl = dict(name=_descriptor.crate_name(name), source=source, version=version,
                edition=edition, output=output, compiler=compiler)

    def binary(s, source, name=None, when=None):
        s.binaries.append((source, name, when))

    def test(s, source, name=None, when=None):
        s.tests.append((source, name, when))

    def subdir(s, *dirs):
        for dir in dirs:
            if not dir in s.subdirs:
                s.subdirs.append(dir)

    def dependency(s, name, path=None, subdir=None, when=None):
        s.dependencies.append((name, path, subdir, when))

    def plugin(s, name, path=None, subdir=None, when=None):
        s.plugins.append((name, path, subdir, when))

    def feature(s, name, default=False, option=None):
        s.features.append((name, default, option or name))

    def option(s, name, default=None, flag=None):
        s.options.append((name, default, flag))

    def flags(s, *flags):
        s.extra_flags.extend(flags)

    def namespace(s):
        ns = { "__file__": os.path.join(s.directory, BUILDFILE), "__name__": "__buildfile__" }
        for name in ("crate", "binary", "test", "subdir", "dependency", "plugin", "feature", "option", "flags"):
            ns[name] = getattr(s, name)
        return ns

def read_buildfile(directory):
    fullpath = os.path.join(directory, BUILDFILE)
    buildfile = Buildfile(directory)
    try:
        with open(fullpath, encoding="utf-8") as f:
            code = compile(f.read(), fullpath, 'exec')
    except FileNotFoundError:
        raise ConfigurationError(directory, "cannot find \"%s\"" % BUILDFILE)
    except SyntaxError as e:
        raise ConfigurationError(directory, "%s:%s: %s" % (BUILDFILE, e.lineno, e.msg))

    dprint("verbose", "Including \"%s\"." % fullpath)
    exec(code, buildfile.namespace())

    if not buildfile.crate_decl:
        raise ConfigurationError(directory, "%s does not declare a crate" % BUILDFILE)

    return buildfile

def parse_settings(args):
    """--enable-x[=value] and --disable-x, autoconf style."""
    settings = {}
    for arg in args:
        if arg.startswith("--enable-"):
            name, sep, value = arg[len("--enable-"):].partition("=")
            value = value if sep else "yes"
        elif arg.startswith("--disable-"):
            name, value = arg[len("--disable-"):], "no"
        else:
            raise ConfigurationError(".", "unrecognized argument \"%s\"" % arg)
        if not name:
            raise ConfigurationError(".", "invalid option \"%s\"" % arg)
        settings[name] = value
    return settings

def resolve_features(buildfile, settings):
    features = set()
    for name, default, option in buildfile.features:
        value = settings.get(option)
        if value is None:
            enabled = bool(default)
        else:
            enabled = value != "no"
        if enabled:
            features.add(name)
    return features

def resolve_options(buildfile, settings):
    flags = []
    for name, default, flag in buildfile.options:
        value = settings.get(name)
        if value is None or value == "yes":
            value = default if default is not None else value
        if value is None or value == "no":
            continue
        if flag:
            flags.extend(shlex.split(flag % value if "%s" in flag else flag))
    return flags

def recognized(buildfile):
    names = set(option for name, default, option in buildfile.features)
    names |= set(name for name, default, flag in buildfile.options)
    return names

def resolve_deps(buildfile, entries, children, features):
    result = []
    for name, path, subdir, when in entries:
        if not evaluate(when, features, buildfile.directory):
            continue
        if not path and subdir:
            child = children.get(os.path.normpath(subdir))
            if child:
                path = os.path.join(subdir, child.output)
        if not path:
            dprint("warning", "warning: %s: no artifact path for dependency \"%s\"" % (buildfile.directory, name))
        result.append({ "name": name, "path": path })
    return result

def resolve_units(buildfile, entries, features):
    result = []
    for source, name, when in entries:
        if evaluate(when, features, buildfile.directory):
            result.append({ "source": source, "name": name or _descriptor.unit_name(source) })
    return result

def configure(directory, settings=None, environ=None, prefix=None, bindir=None, libdir=None):
    """Resolve directory and its subdirectories into config.json files.

    Subdirectories are resolved first so dependencies can name the library a
    subdirectory produces.  Returns the descriptor of directory.
    """
    settings = settings or {}
    environ = os.environ if environ is None else environ
    directory = os.path.abspath(directory)

    buildfile = read_buildfile(directory)

    children = {}
    for subdir in buildfile.subdirs:
        subpath = os.path.join(directory, subdir)
        if not os.path.isdir(subpath):
            raise ConfigurationError(directory, "subdirectory \"%s\" does not exist" % subdir)
        dprint("default", "configuring in %s" % os.path.normpath(subpath))
        children[os.path.normpath(subdir)] = configure(subpath, settings, environ, prefix, bindir, libdir)

    features = resolve_features(buildfile, settings)
    flags = shlex.split(environ.get("RUSTFLAGS") or "") + buildfile.extra_flags + resolve_options(buildfile, settings)

    crate = buildfile.crate_decl
    prefix = prefix or "/usr/local"

    d = {
        "name": crate["name"],
        "version": crate["version"],
        "edition": crate["edition"],
        "source": crate["source"],
        "output": crate["output"],
        "compiler": environ.get("RUSTC") or crate["compiler"] or "rustc",
        "flags": flags,
        "extra_flags": [],
        "features": sorted(features),
        "dependencies": resolve_deps(buildfile, buildfile.dependencies, children, features),
        "plugins": resolve_deps(buildfile, buildfile.plugins, children, features),
        "subdirs": buildfile.subdirs,
        "binaries": resolve_units(buildfile, buildfile.binaries, features),
        "tests": resolve_units(buildfile, buildfile.tests, features),
        "install": {
            "prefix": prefix,
            "bindir": bindir or os.path.join(prefix, "bin"),
            "libdir": libdir or os.path.join(prefix, "lib"),
        },
    }

    descriptor = _descriptor.from_dict(d, directory)
    filename = _descriptor.save(directory, descriptor)
    dprint("default", "configure: creating %s" % filename)
    dprint("verbose", "configure: features: %s" % (" ".join(descriptor.features) or "(none)"))
    return descriptor

def unrecognized_settings(directory, settings):
    known = set()
    stack = [os.path.abspath(directory)]
    while stack:
        dir = stack.pop()
        buildfile = read_buildfile(dir)
        known |= recognized(buildfile)
        stack.extend(os.path.join(dir, sub) for sub in buildfile.subdirs)
    return sorted(set(settings) - known)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='cratejam-configure',
            description='Resolve build.py files into config.json for cratejam.',
            epilog='Features and options are toggled with --enable-NAME[=VALUE] and --disable-NAME.')
    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    parser.add_argument('--srcdir', default=".", help='top level directory (default: current directory)')
    parser.add_argument('--prefix', default="/usr/local", help='install prefix (default: /usr/local)')
    parser.add_argument('--bindir', help='install directory for binaries (default: PREFIX/bin)')
    parser.add_argument('--libdir', help='install directory for the library (default: PREFIX/lib)')
    parser.add_argument('-d', "--debug", help='enable specific debug output', action="append", choices=log.valid_levels(), metavar="{x}" )
    parser.add_argument('-Q', "--quiet", help='disable default output', action="store_true" )

    args, rest = parser.parse_known_args(argv)
    return parser, args, rest

def main(argv=None):
    parser, args, rest = parse_args(argv)

    if args.quiet:
        log.disable(["default"])
    log.enable(args.debug)

    try:
        settings = parse_settings(rest)
        for name in unrecognized_settings(args.srcdir, settings):
            dprint("warning", "configure: WARNING: unrecognized options: --enable-%s" % name)
        configure(args.srcdir, settings, os.environ, args.prefix, args.bindir, args.libdir)
    except CratejamError as e:
        dprint("error", "cratejam-configure: error: %s" % e)
        sys.exit(1)
    except Exception:
        # errors raised by the build.py files themselves
        traceback.print_exc()
        sys.exit(1)

    sys.exit(0)

if __name__ == '__main__':
    main()
