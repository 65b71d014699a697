import json
import os
import shlex
import threading
from collections import namedtuple

from cratejam.errors import CompilationError, MissingDependencyMapping
from cratejam.log import dprint, enabled
from cratejam.targets import FileTarget

CompileOptions = namedtuple("CompileOptions", ["compiler", "flags", "extra_flags", "features", "edition"])

def remove(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass

def quote(argv):
    return " ".join(shlex.quote(arg) for arg in argv)

class Invocation(object):
    """Everything one run of cratejam threads into the processes it launches.

    The environment is captured once; RUSTC, RUSTFLAGS and EXTRA_RUSTFLAGS
    override the resolved configuration, STRIP and DESTDIR are used by
    install-strip and install.
    """

    def __init__(s, environ=None, jobs=None, quit=False, rebuild_all=False, pool=None):
        s.environ = dict(os.environ if environ is None else environ)
        s.jobs = jobs
        s.quit = quit
        s.rebuild_all = rebuild_all
        s.pool = pool
        s._options = {}
        s._lock = threading.Lock()

    def override(s, name):
        return s.environ.get(name) or None

    def compile_options(s, node):
        # computed once per directory, every compile target of it shares them
        with s._lock:
            options = s._options.get(node.path)
            if options:
                return options

            d = node.descriptor
            compiler = shlex.split(s.override("RUSTC") or d.compiler)

            flags = d.flags
            if s.override("RUSTFLAGS") is not None:
                flags = shlex.split(s.override("RUSTFLAGS"))

            extra_flags = d.extra_flags
            if s.override("EXTRA_RUSTFLAGS") is not None:
                extra_flags = shlex.split(s.override("EXTRA_RUSTFLAGS"))

            options = CompileOptions(compiler, list(flags), list(extra_flags), sorted(set(d.features)), d.edition)
            s._options[node.path] = options
            return options

    @property
    def destdir(s):
        return s.environ.get("DESTDIR", "")

    def strip_command(s):
        return shlex.split(s.override("STRIP") or "strip")

    def env(s, extra=None):
        my_env = dict(s.environ)
        for name, val in (extra or {}).items():
            dprint("debug", "Exporting %s=%s" % (name, val))
            my_env[name] = str(val)
        return my_env

    def call(s, argv, cwd, extra_env=None):
        dprint("commands", "+ (cd %s && %s)" % (shlex.quote(cwd), quote(argv)))
        return s.pool.callCommand(argv, env=s.env(extra_env), cwd=cwd)

class OptionsRecord(FileTarget):
    """Record of the compile options a directory was last built with.

    Rewritten only when the options change, every compile target depends on
    it, so changing e.g. the feature set rebuilds every artifact.
    """

    def __init__(s, name, path, node, options):
        super().__init__(name, path, node)
        s.content = json.dumps(options._asdict(), sort_keys=True) + "\n"
        s.add_action(WriteOptions(s.content))

    def check_update(s):
        if s.rebuild or s.done:
            return s.rebuild
        try:
            with open(s.path, encoding="utf-8") as f:
                current = f.read()
        except (OSError, UnicodeDecodeError):
            current = None
        if current != s.content:
            dprint('cause', "compile options of %s changed." % s.node.relpath)
            s.rebuild = True
        else:
            s.update_mtime()
        return s.rebuild

class WriteOptions(object):
    def __init__(s, content):
        s.content = content

    def build(s, target):
        dprint("verbose", "[OPTIONS] %s" % target.name)
        tmp = target.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(s.content)
        os.replace(tmp, target.path)
        return True

class Compile(object):
    name = "RUSTC"
    kind = None
    message = "[%name] %target from %sources"
    # rebuilding this artifact invalidates the directory's stamp
    stamped = False

    def __init__(s, invocation, node, crate, source, artifact, externs, tracker=None):
        s.invocation = invocation
        s.node = node
        s.crate = crate
        s.source = source
        s.artifact = artifact
        s.record = artifact + ".d"
        s.externs = externs
        s.tracker = tracker

    def kind_args(s):
        return ["--crate-type", s.kind]

    def extern_args(s):
        args = []
        for name, path in s.externs:
            args += ["--extern", "%s=%s" % (name, path)]
        return args

    def command(s, artifact, record):
        options = s.invocation.compile_options(s.node)
        argv = list(options.compiler) + options.flags + options.extra_flags
        for feature in options.features:
            argv += ["--cfg", 'feature="%s"' % feature]
        argv += ["--crate-name", s.crate]
        argv += s.kind_args()
        if options.edition:
            argv += ["--edition", str(options.edition)]
        argv += ["--emit", "dep-info=%s,link=%s" % (record, artifact)]
        argv.append(s.source)
        return argv + s.extern_args()

    def compile_env(s):
        d = s.node.descriptor
        return {
            "CARGO_MANIFEST_DIR": s.node.path,
            "CARGO_PKG_NAME": d.name,
            "CARGO_PKG_VERSION": d.version,
            "CARGO_CRATE_NAME": s.crate,
        }

    def verify(s, target):
        for name, path in s.externs:
            if not path:
                raise MissingDependencyMapping(target.name, name)

    def build(s, target):
        output = s.message.replace("%name", s.name).replace("%target", target.name).replace("%sources", s.source)
        dprint("default", output)

        if s.stamped and s.tracker:
            s.tracker.begin()

        artifact = os.path.join(s.node.path, s.artifact)
        record = os.path.join(s.node.path, s.record)
        tmp_artifact = artifact + ".tmp"
        tmp_record = record + ".tmp"

        argv = s.command(s.artifact + ".tmp", s.record + ".tmp")
        output, returncode = s.invocation.call(argv, s.node.path, s.compile_env())

        if returncode == 0 and not (os.path.exists(tmp_artifact) and os.path.exists(tmp_record)):
            output += "\ncompiler did not produce %s and its dependency record" % s.artifact
            returncode = -1

        if returncode != 0:
            remove(tmp_artifact)
            remove(tmp_record)
            if s.stamped and s.tracker:
                s.tracker.fail()
            if not enabled("commands"):
                output = quote(argv) + "\n" + output
            raise CompilationError(target.name, returncode, output)

        # the record goes first: an artifact is never newer than a stale record
        os.replace(tmp_record, record)
        os.replace(tmp_artifact, artifact)

        if output.strip():
            dprint("default", output.rstrip())

        return True

class CompileLibrary(Compile):
    name = "RUSTC-LIB"
    kind = "rlib"
    stamped = True

class CompileBinary(Compile):
    name = "RUSTC-BIN"
    kind = "bin"
    stamped = True

class CompileTest(Compile):
    name = "RUSTC-TEST"

    def kind_args(s):
        return ["--test"]
