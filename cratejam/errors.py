class CratejamError(Exception):
    pass

class ConfigurationError(CratejamError):
    def __init__(s, directory, reason):
        s.directory = directory
        s.reason = reason
        super().__init__(directory, reason)

    def __str__(s):
        return "configuration error in \"%s\": %s" % (s.directory, s.reason)

class MissingDependencyMapping(CratejamError):
    def __init__(s, target, dependency):
        s.target = target
        s.dependency = dependency
        super().__init__(target, dependency)

    def __str__(s):
        return "dependency \"%s\" of target \"%s\" has no artifact path." % (s.dependency, s.target)

class CompilationError(CratejamError):
    def __init__(s, target, returncode, output):
        s.target = target
        s.returncode = returncode
        s.output = output
        super().__init__(target, returncode)

    def __str__(s):
        return "compiling %s failed (exit status %s)" % (s.target, s.returncode)

class TestFailure(CratejamError):
    __test__ = False

    def __init__(s, binary, returncode, output=""):
        s.binary = binary
        s.returncode = returncode
        s.output = output
        super().__init__(binary, returncode)

    def __str__(s):
        return "test binary %s failed (exit status %s)" % (s.binary, s.returncode)

class UnknownTargetException(CratejamError):
    def __init__(s, name):
        s.name = name
        super().__init__(name)

    def __str__(s):
        return "UnknownTargetException: target \"%s\"." % s.name

class InstallError(CratejamError):
    def __init__(s, path, reason):
        s.path = path
        s.reason = reason
        super().__init__(path, reason)

    def __str__(s):
        return "installing %s failed: %s" % (s.path, s.reason)
