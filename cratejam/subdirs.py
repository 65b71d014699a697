import os

from cratejam import descriptor as _descriptor
from cratejam.descriptor import STAMP_FILE
from cratejam.errors import ConfigurationError
from cratejam.lifecycle import StampTracker
from cratejam.log import dprint

# the only targets of a subdirectory its parent may depend on
AGGREGATES = (STAMP_FILE, "clean", "distclean", "install", "install-strip", "check")

class Subproject(object):
    def __init__(s, path, relpath, descriptor, parent=None):
        s.path = path
        s.relpath = relpath
        s.descriptor = descriptor
        s.parent = parent
        s.children = []
        s.tracker = StampTracker(path)

    def target_name(s, name):
        return os.path.normpath(os.path.join(s.relpath, name))

    def aggregate(s, name):
        if not name in AGGREGATES:
            raise KeyError("%s is not an aggregate target" % name)
        return s.target_name(name)

    def __repr__(s):
        return "Subproject(%s)" % s.relpath

def load_tree(root, relpath=".", parent=None, visited=None):
    """Resolve root and, recursively, every subdirectory it declares.

    Each directory gets its own descriptor, independent of its parent's.
    """
    path = os.path.abspath(root)
    visited = visited if visited is not None else set()

    real = os.path.realpath(path)
    if real in visited:
        raise ConfigurationError(path, "subdirectory included twice (or cycle)")
    visited.add(real)

    dprint("phases", "... loading %s ..." % os.path.join(relpath, _descriptor.CONFIG_FILE))
    node = Subproject(path, relpath, _descriptor.load(path), parent)

    for subdir in node.descriptor.subdirs:
        subpath = os.path.join(path, subdir)
        if not os.path.isdir(subpath):
            raise ConfigurationError(path, "subdirectory \"%s\" does not exist" % subdir)
        child = load_tree(subpath, os.path.normpath(os.path.join(relpath, subdir)), node, visited)
        node.children.append(child)

    return node
