import argparse
import os
import sys
import time

from cratejam import __version__
from cratejam import jobserver
from cratejam import log
from cratejam.driver import Invocation
from cratejam.errors import CratejamError
from cratejam.graph import build_registry
from cratejam.log import dprint
from cratejam.scheduler import Scheduler
from cratejam.subdirs import load_tree

def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='cratejam', description='Incremental builds for trees of crates.')

    parser.add_argument('targets', metavar='target', type=str, nargs='*',
            help='targets to build: all, clean, distclean, install, install-strip, check or any artifact (default: all)')
    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)

    parser.add_argument('-a', "--all", help='Build all targets, even if they are current.', action="store_true", default=False )
    parser.add_argument('-C', '--directory', default=".",
            help='directory holding the top level config.json (default: current directory)')
    parser.add_argument('-j', '--jobs', type=int, action='store',
            help='number of concurrent jobs (default: 1)')
    parser.add_argument('-q', "--quit", help='stop on first error', action="store_true" )
    parser.add_argument('-d', "--debug", help='enable specific debug output', action="append", choices=log.valid_levels(), metavar="{x}" )
    parser.add_argument('-Q', "--quiet", help='disable default output', action="store_true" )

    return parser.parse_args(argv)

def run(directory=".", targets=None, jobs=None, quit=False, rebuild_all=False, environ=None):
    """Build targets below directory, return the process exit status."""
    targets = targets or ["all"]
    directory = os.path.abspath(directory)

    before = time.time()
    try:
        tree = load_tree(directory)
    except CratejamError as e:
        dprint("error", "cratejam: error: %s" % e)
        return 1

    invocation = Invocation(environ, jobs=jobs, quit=quit, rebuild_all=rebuild_all)
    invocation.pool = jobserver.JobServerPool(max(jobs or 1, 1))
    try:
        registry = build_registry(tree, invocation)
        dprint("times", "... parsing took %.3fs" % (time.time() - before))

        scheduler = Scheduler(registry, invocation)
        scheduler.want(targets)
        success = scheduler.run()
    except CratejamError as e:
        dprint("error", "cratejam: error: %s" % e)
        return 1
    finally:
        invocation.pool.destroy()

    return 0 if success else 1

def main(argv=None):
    args = parse_args(argv)

    if args.quiet:
        log.disable(["default"])

    log.enable(args.debug)

    sys.exit(run(args.directory, args.targets, args.jobs, args.quit, args.all))

if __name__ == '__main__':
    main()
