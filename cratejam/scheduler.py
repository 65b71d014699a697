import sys
import threading
import time
import traceback
from queue import PriorityQueue, Empty
from threading import Thread

from cratejam.errors import CompilationError, ConfigurationError, CratejamError, TestFailure
from cratejam.log import dprint
from cratejam.targets import listify, str_list

class Scheduler(object):
    def __init__(s, registry, invocation):
        s.registry = registry
        s.invocation = invocation
        s.queue = PriorityQueue()
        s.prio = 0
        s.wanted = []
        s.reachable = []
        s.exit = False
        s.lock = threading.Lock()

        s.updated = 0
        s.failed = []
        s.skipped = []

    def want(s, names):
        for name in listify(names):
            target = s.registry.get(name)
            if not target in s.wanted:
                dprint("verbose", "... want target", name)
                s.wanted.append(target)
        return s

    def check_depends(s):
        checked = set()
        for target in s.wanted:
            stack = []
            if target.check_circular_dep(stack, checked):
                raise ConfigurationError(s.registry.basedir, "circular dependency: %s" % " -> ".join(str_list(stack)))

    def prepare(s):
        """Stabilize the part of the graph the wanted targets need.

        Every reachable target gets a priority (prerequisites first, in
        declaration order) and its count of unfinished prerequisites.  Raises
        MissingDependencyMapping before anything runs if a compile target
        can't map one of its dependencies to an artifact.
        """
        s.check_depends()

        for target in s.wanted:
            for dep in list(target.iterate_dependencies()) + [target]:
                if dep.stable:
                    continue
                dep.stable = True
                dep.prio = s.prio
                s.prio += 1
                s.reachable.append(dep)

        for target in s.reachable:
            target.verify()

        for target in s.reachable:
            target.ndeps = len(target.deps)
            for dep in target.deps:
                dep.needed_for.append(target)

    def queue_ready(s):
        for target in s.reachable:
            with target.lock:
                if not target.ndeps and not target.queued:
                    dprint("verbose", "... queueing target", target)
                    target.queued = True
                    s.queue.put((target.prio, target))

    def run_target(s, target):
        if target.missing and not target.collect:
            target.can_make()
            with s.lock:
                s.skipped.append(target)
            return False

        try:
            target.check_update()
            if not target.rebuild:
                return True
            success = target.do_build()
        except CompilationError as e:
            target.error = e
            dprint("error", "error: %s" % e)
            dprint("error", e.output.rstrip())
            success = False
        except TestFailure as e:
            target.error = e
            dprint("error", "error: %s" % e)
            if e.output.strip():
                dprint("error", e.output.rstrip())
            success = False
        except (CratejamError, OSError) as e:
            target.error = e
            dprint("error", "error: %s: %s" % (target.name, e))
            success = False
        except Exception as e:
            # fails this target only, the queue still waits for every item
            target.error = e
            dprint("error", "error: %s: unexpected %s" % (target.name, e.__class__.__name__))
            dprint("error", traceback.format_exc().rstrip())
            success = False

        with s.lock:
            if success and target.actions:
                s.updated += 1
            elif not success:
                s.failed.append(target)
        return success

    def worker(s, block=False, n=0):
        queue = s.queue
        dprint("threads", "%2i: Worker thread started." % n)
        while True:
            try:
                prio, target = queue.get(block=block)
            except Empty:
                return

            if target is None:
                queue.task_done()
                return

            if s.exit:
                # draining after a failure with --quit
                queue.task_done()
                continue

            dprint("threads", "%2i: building target %s (prio=%s)" % (n, target.name, prio))

            try:
                success = s.run_target(target)
                if not success:
                    target.failed = True
                    if s.invocation.quit:
                        s.exit = True

                target.done = True
                dprint("threads", "%2i: done building target %s (prio=%s)" % (n, target.name, prio))

                if not s.exit:
                    for needed_for in target.needed_for:
                        with needed_for.lock:
                            if not success:
                                needed_for.missing.append(target.name)
                            needed_for.ndeps -= 1
                            if not needed_for.ndeps and not needed_for.queued:
                                dprint("verbose", "%2i: queuing target" % n, needed_for, "(prio=%s)" % needed_for.prio)
                                needed_for.queued = True
                                queue.put((needed_for.prio, needed_for))
            finally:
                queue.task_done()

    def run(s):
        """Build the wanted targets, return True if all of them were made."""
        before = time.time()
        s.prepare()
        s.queue_ready()

        jobs = s.invocation.jobs or 1
        if jobs > 1:
            threads = []
            for i in range(0, jobs):
                t = Thread(target=s.worker, args=(True, i), daemon=True)
                t.start()
                threads.append(t)
            s.queue.join()
            for i, t in enumerate(threads):
                s.queue.put((sys.maxsize + i, None))
            for t in threads:
                t.join()
        else:
            s.worker()

        dprint("times", "... building took %.3fs" % (time.time() - before))

        if s.failed:
            dprint("default", "...failed updating %i target(s)..." % len(s.failed))
        if s.skipped:
            dprint("default", "...skipped %i target(s)..." % len(s.skipped))
        dprint("default", "... updated %i target(s) ..." % s.updated)

        return not (s.failed or s.skipped or s.exit) and all(t.done for t in s.wanted)
