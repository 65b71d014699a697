#
# Boolean feature expressions, e.g. "std and not (no-alloc or hardware-rand)".
#
# Parse actions associated with each operator expression "compile" the
# expression into Feature* instances, which are evaluated later against a
# predicate telling whether a feature is enabled.
#
from pyparsing import infix_notation, OpAssoc, Keyword, Regex, ParseException

from cratejam.errors import ConfigurationError

class FeatureOperand(object):
    def __init__(self, t, eval_func):
        self.label = t[0]
        self.func = eval_func
    def __bool__(self):
        return bool(self.func(self.label))
    def __str__(self):
        return self.label
    __repr__ = __str__

class FeatureBinOp(object):
    def __init__(self, t):
        self.args = t[0][0::2]
    def __str__(self):
        sep = " %s " % self.reprsymbol
        return "(" + sep.join(map(str, self.args)) + ")"
    def __bool__(self):
        return self.evalop(bool(a) for a in self.args)
    __repr__ = __str__

class FeatureAnd(FeatureBinOp):
    reprsymbol = '&'
    evalop = all

class FeatureOr(FeatureBinOp):
    reprsymbol = '|'
    evalop = any

class FeatureNot(object):
    def __init__(self, t):
        self.arg = t[0][1]
    def __bool__(self):
        return not bool(self.arg)
    def __str__(self):
        return "~" + str(self.arg)
    __repr__ = __str__

class FeatureParser(object):
    def _operand(s, t):
        return FeatureOperand(t, s.eval_func)

    def __init__(s, eval_func):
        s.eval_func = eval_func
        s.operand = Regex(r'(?!(?:and|or|not)(?![\w\-]))[A-Za-z0-9_][\w\-]*')
        s.operand.set_parse_action(s._operand)

        s.expr = infix_notation(s.operand,
            [
            (Keyword("not"), 1, OpAssoc.RIGHT, FeatureNot),
            (Keyword("and"), 2, OpAssoc.LEFT,  FeatureAnd),
            (Keyword("or"),  2, OpAssoc.LEFT,  FeatureOr),
            ])

    def parse(s, string):
        return s.expr.parse_string(string, parse_all=True)[0]

def evaluate(expression, features, directory="."):
    """Evaluate a feature expression against a set of enabled features.

    An empty expression is always true.
    """
    if expression is None or not str(expression).strip():
        return True

    features = set(features)
    parser = FeatureParser(lambda name: name in features)
    try:
        return bool(parser.parse(expression))
    except ParseException as e:
        raise ConfigurationError(directory, "invalid feature expression \"%s\": %s" % (expression, e))
