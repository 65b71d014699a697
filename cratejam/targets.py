import os
import sys
import threading

from cratejam.errors import ConfigurationError, UnknownTargetException
from cratejam.log import dprint

def listify(something):
    if not something:
        return []
    if not type(something)==list:
        return [something]
    return something

def str_list(list):
    res = []
    for x in list or []:
        res.append(str(x))
    return res

class Target(object):
    def __init__(s, name, node=None):
        s.name=name
        s.node=node

        s.deps=[]
        s.needed_for=[]
        s.missing=[]

        s.rebuild=False
        s.stable=False
        s.queued=False
        s.done=False
        s.failed=False
        # run the actions even if prerequisites failed (aggregating targets)
        s.collect=False

        s.actions = []
        s.ndeps = 0
        s.lock = threading.Lock()

        s.prio = -1
        s.mtime=sys.maxsize

    def depends(s, targets):
        for target in listify(targets):
            if target is s:
                dprint("depends", "warning: %s depends on itself!" % s.name)
                continue
            if not target in s.deps:
                dprint("depends", "Depends: \"%s\" : \"%s\"" % (s.name, target))
                s.deps.append(target)
        return s

    def add_action(s, action):
        s.actions.append(action)
        return s

    def verify(s):
        for action in s.actions:
            check = getattr(action, 'verify', None)
            if check:
                check(s)

    def update_mtime(s):
        s.mtime=sys.maxsize
        return True

    def can_make(s):
        if s.missing and not s.collect:
            # report in declaration order
            for dep in s.deps:
                if dep.name in s.missing:
                    dprint("default", "...skipped %s for lack of %s..." % (s.name, dep.name))
            return False

        return True

    def do_build(s):
        return s.can_make() and s.build()

    def check_update(s):
        if s.rebuild or s.done:
            pass
        else:
            for dep in s.deps:
                if dep.check_update():
                    dprint('cause', "rebuilding %s because dependency %s has to be rebuilt." % (s.name, dep.name))
                elif dep.mtime > s.mtime:
                    dprint('cause', "%s is older than %s (%s < %s). Rebuilding." %( s.name, dep.name, s.mtime, dep.mtime))
                else:
                    continue
                s.rebuild=True
                break
        return s.rebuild

    def build(s):
        result = True
        for action in s.actions:
            result = action.build(s)
            if result==False:
                return result

        return result

    def check_circular_dep(s, stack, checked=None):
        checked = checked if checked is not None else set()
        if s in checked:
            return False
        stack.append(s)

        for dep in s.deps:
            if dep in stack or dep.check_circular_dep(stack, checked):
                if dep in stack:
                    stack.append(dep)
                return True

        stack.pop()
        checked.add(s)
        return False

    def __str__(s):
        return s.name

    def __repr__(s):
        return "%s(%s)" % (s.__class__.__name__, s.name)

    def __lt__(s, other):
        return s.name < other.name

    def iterate_dependencies(s, visited=None):
        visited = visited if visited is not None else set()
        for dep in s.deps:
            if dep in visited:
                continue
            visited.add(dep)
            for _dep in dep.iterate_dependencies(visited):
                yield _dep
            yield dep

class PhonyTarget(Target):
    def __init__(s, name, node=None, always=True):
        super().__init__(name, node)
        s.rebuild = always

class FileTarget(Target):
    def __init__(s, name, path, node=None):
        dprint("targets", "New file target %s" % name)
        super().__init__(name, node)
        s.path = path
        s.stat = None
        # created from a dependency record, may legitimately be gone
        s.discovered = False

    def update_stat(s):
        try:
            s.stat = os.stat(s.path)
            return True
        except OSError:
            return False

    def update_mtime(s):
        if not s.stat and not s.update_stat():
            return False
        else:
            s.mtime=s.stat.st_mtime
            return True

    def exists(s):
        return os.path.exists(s.path)

    def check_update(s):
        if s.rebuild or s.done:
            pass
        elif not s.update_mtime():
            dprint('cause', "%s does not exist. Rebuilding." % s.name)
            s.rebuild=True
        else:
            s.rebuild = super().check_update()

        return s.rebuild

    def build(s):
        if not s.actions:
            if s.discovered or s.exists():
                return True
            dprint("error", "don't know how to build %s." % s.name)
            return False

        return super().build()

class Registry(object):
    """All targets of one invocation, keyed by their root relative name."""

    def __init__(s, basedir):
        s.basedir = os.path.abspath(basedir)
        s.targets = {}

    def name(s, path):
        path = os.path.normpath(path)
        if os.path.isabs(path):
            rel = os.path.relpath(path, s.basedir)
            if not rel.startswith(".."):
                return rel
        return path

    def path(s, name):
        return os.path.join(s.basedir, name)

    def get(s, name):
        target = s.targets.get(name)
        if not target:
            raise UnknownTargetException(name)
        return target

    def add(s, target):
        if target.name in s.targets:
            dprint("warning", "warning: redefining target %s!" % target.name)
        s.targets[target.name] = target
        return target

    def phony(s, name, node=None, always=True):
        if isinstance(s.targets.get(name), FileTarget):
            raise ConfigurationError(s.basedir, "file \"%s\" clashes with the phony target of the same name, rename it" % name)
        return s.add(PhonyTarget(name, node, always))

    def file(s, name, node=None):
        target = s.targets.get(name)
        if type(target) is FileTarget and not target.actions:
            # referenced before its rule was known
            target.node = node
            target.discovered = False
            return target
        return s.add(FileTarget(name, s.path(name), node))

    def source(s, name, discovered=False):
        target = s.targets.get(name)
        if not target:
            target = s.add(FileTarget(name, s.path(name)))
            target.discovered = discovered
        elif not isinstance(target, FileTarget):
            raise ConfigurationError(s.basedir, "file \"%s\" clashes with the phony target of the same name, rename it" % name)
        elif not discovered:
            target.discovered = False
        return target
