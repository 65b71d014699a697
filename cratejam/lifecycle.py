import os
import shutil
import threading

from cratejam.descriptor import CONFIG_FILE, OPTIONS_FILE, STAMP_FILE
from cratejam.errors import InstallError, TestFailure
from cratejam.log import dprint

UNBUILT = "unbuilt"
BUILDING = "building"
STAMPED = "stamped"
FAILED = "failed"

def touch(path):
    with open(path, 'a'):
        os.utime(path, None)

def remove(path):
    try:
        os.remove(path)
        return True
    except (FileNotFoundError, NotADirectoryError):
        return False

class StampTracker(object):
    """Completion state of one directory.

    The stamp file exists iff the library and every binary of the directory
    were most recently compiled successfully.  A failed directory keeps no
    stamp, so the next run can't tell it apart from an unbuilt one.
    """

    def __init__(s, directory):
        s.path = os.path.join(directory, STAMP_FILE)
        s.lock = threading.Lock()
        s.state = STAMPED if os.path.exists(s.path) else UNBUILT

    def begin(s):
        with s.lock:
            if s.state in (BUILDING, FAILED):
                return
            remove(s.path)
            s.state = BUILDING

    def fail(s):
        with s.lock:
            remove(s.path)
            s.state = FAILED

    def stamp(s):
        with s.lock:
            if s.state == FAILED:
                return False
            touch(s.path)
            s.state = STAMPED
            return True

    def clean(s):
        with s.lock:
            remove(s.path)
            s.state = UNBUILT

class Stamp(object):
    def __init__(s, tracker):
        s.tracker = tracker

    def build(s, target):
        dprint("verbose", "[STAMP] %s" % target.name)
        return s.tracker.stamp()

def build_outputs(node):
    d = node.descriptor
    files = []
    for artifact in d.artifacts():
        for suffix in ("", ".d", ".tmp", ".d.tmp"):
            files.append(artifact + suffix)
    files.append(OPTIONS_FILE)
    return files

class Clean(object):
    name = "CLEAN"

    def __init__(s, node, tracker):
        s.node = node
        s.tracker = tracker

    def files(s):
        return build_outputs(s.node)

    def build(s, target):
        for f in s.files():
            if remove(os.path.join(s.node.path, f)):
                dprint("default", "[%s] %s" % (s.name, s.node.target_name(f)))
        s.tracker.clean()
        return True

class Distclean(Clean):
    name = "DISTCLEAN"

    def files(s):
        return super().files() + [CONFIG_FILE]

def install_path(destdir, path):
    if destdir:
        return os.path.join(destdir, path.lstrip(os.sep))
    return path

class Install(object):
    name = "INSTALL"

    def __init__(s, invocation, node, strip=False):
        s.invocation = invocation
        s.node = node
        s.strip = strip

    def items(s):
        d = s.node.descriptor
        items = [(d.output, d.install.libdir, False)]
        for binary in d.binaries:
            items.append((binary.name, d.install.bindir, True))
        return items

    def build(s, target):
        for artifact, directory, executable in s.items():
            source = os.path.join(s.node.path, artifact)
            destdir = install_path(s.invocation.destdir, directory)
            dest = os.path.join(destdir, os.path.basename(artifact))

            dprint("default", "[%s] %s -> %s" % (s.name, s.node.target_name(artifact), dest))

            # copy next to the destination and rename, an aborted install never
            # leaves a truncated file behind
            tmp = dest + ".cratejam-tmp"
            try:
                os.makedirs(destdir, exist_ok=True)
                shutil.copy2(source, tmp)
                if executable and s.strip:
                    s.strip_file(tmp)
                os.replace(tmp, dest)
            except OSError as e:
                remove(tmp)
                raise InstallError(dest, e.strerror or str(e))
            except InstallError:
                remove(tmp)
                raise

        return True

    def strip_file(s, path):
        argv = s.invocation.strip_command() + [path]
        output, returncode = s.invocation.call(argv, s.node.path)
        if returncode != 0:
            raise InstallError(path, "strip failed (exit status %s)\n%s" % (returncode, output.rstrip()))

class RunTest(object):
    name = "TEST"

    def __init__(s, invocation, node, artifact):
        s.invocation = invocation
        s.node = node
        s.artifact = artifact

    def build(s, target):
        binary = s.node.target_name(s.artifact)
        dprint("default", "[%s] %s" % (s.name, binary))

        argv = [os.path.join(s.node.path, s.artifact)]
        output, returncode = s.invocation.call(argv, s.node.path,
                { "CARGO_MANIFEST_DIR": s.node.path })
        if returncode != 0:
            raise TestFailure(binary, returncode, output)

        if output.strip():
            dprint("verbose", output.rstrip())
        return True

class Check(object):
    """Aggregates the outcome of every test binary below a directory."""

    def build(s, target):
        for dep in target.deps:
            if dep.failed:
                target.first_failure = first_failure(dep)
                dprint("error", "error: %s failed, first failing test binary: %s" % (target.name, target.first_failure))
                return False
        return True

def first_failure(target):
    if getattr(target, "first_failure", None):
        return target.first_failure
    if isinstance(getattr(target, "error", None), TestFailure):
        return target.error.binary
    return getattr(target, "binary", target.name)
