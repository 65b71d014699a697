import os

from cratejam.depfile import discovered_inputs
from cratejam.descriptor import OPTIONS_FILE, STAMP_FILE
from cratejam.driver import CompileBinary, CompileLibrary, CompileTest, OptionsRecord
from cratejam.lifecycle import Check, Clean, Distclean, Install, RunTest, Stamp
from cratejam.log import dprint
from cratejam.targets import Registry

def build_registry(tree, invocation):
    registry = Registry(tree.path)
    build_graph(registry, tree, invocation)
    return registry

def resolve_externs(registry, node, deps):
    """Map every dependency to (name, absolute artifact path) and the target
    providing that artifact.  Unresolved dependencies keep a None path, they
    are reported before anything gets compiled."""
    externs = []
    targets = []
    for dep in deps:
        if not dep.path:
            externs.append((dep.name, None))
            continue
        path = os.path.normpath(os.path.join(node.path, dep.path))
        externs.append((dep.name, path))
        targets.append(registry.source(registry.name(path)))
    return externs, targets

def compile_target(registry, node, rule, deps, invocation):
    target = registry.file(node.target_name(rule.artifact), node)
    target.add_action(rule)
    target.depends(registry.source(node.target_name(rule.source)))
    target.depends(deps)

    inputs = discovered_inputs(os.path.join(node.path, rule.record), node.relpath)
    if inputs is None or invocation.rebuild_all:
        target.rebuild = True
    else:
        for name in inputs:
            if name != target.name:
                target.depends(registry.source(registry.name(name), discovered=True))

    return target

def build_graph(registry, node, invocation):
    for child in node.children:
        build_graph(registry, child, invocation)

    d = node.descriptor
    tracker = node.tracker
    dprint("phases", "... building target graph for %s ..." % node.relpath)

    options = registry.add(OptionsRecord(node.target_name(OPTIONS_FILE),
            os.path.join(node.path, OPTIONS_FILE), node, invocation.compile_options(node)))
    if invocation.rebuild_all:
        options.rebuild = True

    externs, extern_targets = resolve_externs(registry, node, d.dependencies + d.plugins)
    own_lib = (d.name, os.path.join(node.path, d.output))

    subdir_stamps = [registry.source(child.aggregate(STAMP_FILE)) for child in node.children]

    lib = compile_target(registry, node,
            CompileLibrary(invocation, node, d.name, d.source, d.output, externs, tracker),
            [options] + extern_targets + subdir_stamps, invocation)

    binaries = []
    for unit in d.binaries:
        binaries.append(compile_target(registry, node,
            CompileBinary(invocation, node, unit.name, unit.source, unit.name, externs + [own_lib], tracker),
            [options, lib] + extern_targets, invocation))

    tests = [compile_target(registry, node,
            CompileTest(invocation, node, d.name, d.source, d.harness, externs),
            [options] + extern_targets + subdir_stamps, invocation)]
    for unit in d.tests:
        tests.append(compile_target(registry, node,
            CompileTest(invocation, node, unit.name, unit.source, unit.name, externs + [own_lib]),
            [options, lib] + extern_targets, invocation))

    stamp = registry.file(node.aggregate(STAMP_FILE), node)
    stamp.add_action(Stamp(tracker))
    stamp.depends([lib] + binaries)
    if invocation.rebuild_all:
        stamp.rebuild = True

    runs = []
    for test in tests:
        artifact = os.path.basename(test.name)
        run = registry.phony(node.target_name("run-%s" % artifact), node)
        run.binary = test.name
        run.add_action(RunTest(invocation, node, artifact))
        run.depends(test)
        runs.append(run)

    def aggregate(name, deps, action=None):
        target = registry.phony(node.target_name(name), node)
        target.depends(deps)
        target.depends([registry.get(child.aggregate(name)) for child in node.children])
        if action:
            target.add_action(action)
        return target

    default = registry.phony(node.target_name("all"), node)
    default.depends(stamp)
    default.depends(subdir_stamps)

    aggregate("clean", [], Clean(node, tracker))
    aggregate("distclean", [], Distclean(node, tracker))
    aggregate("install", [stamp], Install(invocation, node))
    aggregate("install-strip", [stamp], Install(invocation, node, strip=True))

    check = aggregate("check", runs, Check())
    check.collect = True

    return registry
