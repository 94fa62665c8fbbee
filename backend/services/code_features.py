"""Structural feature extraction for submitted source code.

Two front ends produce the same CodeFeatures value:

- Python is parsed with the standard-library ``ast`` module.
- Brace languages (C, C++, Java, JavaScript, TypeScript, Go, C#, Rust,
  Kotlin, Swift) are scanned after comments and string literals have been
  blanked out. A single pass over ``{ } ( ) ;`` and identifiers builds a
  scope stack that knows which braces open loop bodies and which open
  function bodies.

Nothing here executes the submitted code. Pattern naming and complexity
classification only ever read CodeFeatures, so both front ends stay
interchangeable.
"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field

PYTHON = "python"

BRACE_LANGUAGES = frozenset(
    {"c", "cpp", "java", "javascript", "typescript", "go", "csharp", "rust", "kotlin", "swift"}
)

_LANGUAGE_ALIASES = {
    "py": PYTHON,
    "python3": PYTHON,
    "c++": "cpp",
    "cxx": "cpp",
    "cc": "cpp",
    "js": "javascript",
    "node": "javascript",
    "ts": "typescript",
    "golang": "go",
    "c#": "csharp",
    "cs": "csharp",
    "rs": "rust",
    "kt": "kotlin",
}


class UnparseableSourceError(Exception):
    """The source could not be parsed into a structure worth analyzing."""


def normalize_language(language: str | None) -> str | None:
    """Map a language tag onto a supported language, or None."""
    key = (language or "").strip().lower()
    key = _LANGUAGE_ALIASES.get(key, key)
    if key == PYTHON or key in BRACE_LANGUAGES:
        return key
    return None


# --- Shared intermediate representation ---

# A loop path is (linear_loops, halving_loops) counted from the outermost
# enclosing loop down to and including the loop or call site in question.
LoopPath = tuple[int, int]


@dataclass
class RecursiveFunction:
    """A function that calls itself."""

    name: str
    self_calls: int = 0
    calls_in_loop: bool = False
    halves_input: bool = False
    memoized: bool = False
    memo_2d: bool = False
    extends_and_retracts: bool = False

    @property
    def branching(self) -> bool:
        return self.self_calls >= 2 or self.calls_in_loop


@dataclass
class CodeFeatures:
    """Every structural signal extracted from one submission."""

    language: str
    loop_paths: list[LoopPath] = field(default_factory=list)
    max_loop_depth: int = 0
    sort_sites: list[LoopPath] = field(default_factory=list)
    search_sites: list[LoopPath] = field(default_factory=list)
    manual_binary_search: bool = False
    recursive_functions: list[RecursiveFunction] = field(default_factory=list)
    two_pointer: bool = False
    sliding_window: bool = False
    dp_table: bool = False
    dp_table_2d: bool = False
    graph_traversal: bool = False
    hash_lookup: bool = False
    uses_heap: bool = False
    early_exit: bool = False
    allocates_linear: bool = False
    allocates_2d: bool = False

    @property
    def has_recursion(self) -> bool:
        return bool(self.recursive_functions)

    @property
    def has_memoization(self) -> bool:
        return any(f.memoized for f in self.recursive_functions)

    @property
    def has_binary_search(self) -> bool:
        return self.manual_binary_search or bool(self.search_sites)

    @property
    def has_sorting(self) -> bool:
        return bool(self.sort_sites)

    @property
    def has_backtracking(self) -> bool:
        return any(
            f.branching and f.extends_and_retracts and not f.memoized
            for f in self.recursive_functions
        )

    @property
    def has_divide_and_conquer(self) -> bool:
        return any(
            f.branching and f.halves_input and not f.memoized for f in self.recursive_functions
        )


def extract_features(source: str, language: str) -> CodeFeatures:
    """Extract features for a normalized language tag.

    Raises:
        UnparseableSourceError: if the source has no recoverable structure.
    """
    if language == PYTHON:
        return _extract_python_features(source)
    return _extract_brace_features(source, language)


# --- Python front end ---

_MEMO_NAMES = frozenset({"memo", "cache", "dp", "table", "lookup"})
_VISITED_NAMES = frozenset({"visited", "seen", "explored", "discovered"})
_GRAPH_NAMES = frozenset(
    {"graph", "adj", "adjacency", "adj_list", "neighbors", "neighbours", "edges", "children"}
)
_QUEUE_CALLS = frozenset({"deque", "Queue", "SimpleQueue", "LifoQueue", "popleft"})
_HEAP_CALLS = frozenset(
    {"heappush", "heappop", "heapify", "heapreplace", "heappushpop", "PriorityQueue",
     "nlargest", "nsmallest"}
)
_HASH_BUILDERS = frozenset({"dict", "set", "frozenset", "Counter", "defaultdict", "OrderedDict"})
_SEARCH_CALLS = frozenset({"bisect", "bisect_left", "bisect_right", "insort", "insort_left",
                           "insort_right"})
_GROW_METHODS = frozenset({"append", "add", "extend", "appendleft", "insert", "setdefault"})
_SHRINK_METHODS = frozenset({"pop", "remove", "discard", "popleft"})
_MIDPOINT_NAMES = frozenset({"mid", "middle", "m"})
_MEMO_DECORATORS = frozenset({"lru_cache", "cache", "memoize", "cached"})


def _is_memo_name(name: str | None) -> bool:
    if not name:
        return False
    return name in _MEMO_NAMES or name.startswith("memo") or name.endswith(("_memo", "_cache"))


def _name_of(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _root_name(node: ast.AST) -> str | None:
    while isinstance(node, ast.Subscript):
        node = node.value
    return _name_of(node)


def _is_constant(node: ast.AST, value: int) -> bool:
    return isinstance(node, ast.Constant) and node.value == value


def _is_halving_expr(node: ast.AST) -> bool:
    if not isinstance(node, ast.BinOp):
        return False
    if isinstance(node.op, (ast.FloorDiv, ast.Div)):
        return _is_constant(node.right, 2)
    if isinstance(node.op, ast.RShift):
        return _is_constant(node.right, 1)
    return False


def _contains_halving(node: ast.AST) -> bool:
    return any(_is_halving_expr(n) for n in ast.walk(node))


def _halves_argument(node: ast.AST) -> bool:
    for n in ast.walk(node):
        if _is_halving_expr(n):
            return True
        if isinstance(n, ast.Name) and n.id in _MIDPOINT_NAMES:
            return True
    return False


_LOOP_NODES = (ast.For, ast.AsyncFor, ast.While)


def _walk_own_body(loop: ast.While):
    """Walk a loop body without descending into nested loops."""
    todo: list[ast.AST] = list(loop.body)
    while todo:
        node = todo.pop()
        yield node
        if not isinstance(node, _LOOP_NODES):
            todo.extend(ast.iter_child_nodes(node))


def _is_binary_search_loop(loop: ast.While) -> bool:
    midpoints: set[str] = set()
    assigns = [n for n in _walk_own_body(loop) if isinstance(n, ast.Assign)]
    for node in assigns:
        if _contains_halving(node.value):
            midpoints.update(t.id for t in node.targets if isinstance(t, ast.Name))
    if not midpoints:
        return False
    for node in assigns:
        value = node.value
        if isinstance(value, ast.BinOp) and isinstance(value.op, (ast.Add, ast.Sub)):
            value = value.left
        if isinstance(value, ast.Name) and value.id in midpoints:
            if any(isinstance(t, ast.Name) and t.id not in midpoints for t in node.targets):
                return True
    return False


def _is_shrinking_loop(loop: ast.While) -> bool:
    for node in _walk_own_body(loop):
        if isinstance(node, ast.AugAssign) and isinstance(node.target, ast.Name):
            op = node.op
            if isinstance(op, (ast.FloorDiv, ast.Div, ast.Mult)) and _is_constant(node.value, 2):
                return True
            if isinstance(op, (ast.RShift, ast.LShift)) and _is_constant(node.value, 1):
                return True
        if isinstance(node, ast.Assign) and _is_halving_expr(node.value):
            left = node.value.left
            if isinstance(left, ast.Name) and any(
                isinstance(t, ast.Name) and t.id == left.id for t in node.targets
            ):
                return True
    return False


@dataclass
class _Frame:
    info: RecursiveFunction
    grown: set[str] = field(default_factory=set)
    shrunk: set[str] = field(default_factory=set)


class _PythonFeatureVisitor(ast.NodeVisitor):
    """Walks a module once, tracking loop nesting and enclosing functions."""

    def __init__(self) -> None:
        self.features = CodeFeatures(language=PYTHON)
        self._path: list[bool] = []  # halving flag per enclosing loop
        self._frames: list[_Frame] = []
        self._names: set[str] = set()
        self._hash_built = False
        self._hash_probed = False
        self._uses_queue = False
        self._uses_stack = False
        self._mentions_window = False

    # Loop bookkeeping

    def _current_path(self) -> LoopPath:
        halving = sum(self._path)
        return (len(self._path) - halving, halving)

    def _enter_loop(self, halving: bool) -> None:
        self._path.append(halving)
        self.features.loop_paths.append(self._current_path())
        self.features.max_loop_depth = max(self.features.max_loop_depth, len(self._path))

    def _exit_loop(self) -> None:
        self._path.pop()

    def finish(self) -> CodeFeatures:
        f = self.features
        f.graph_traversal = (
            bool(self._names & _VISITED_NAMES)
            and bool(self._names & _GRAPH_NAMES)
            and (f.has_recursion or self._uses_queue or self._uses_stack)
        )
        f.hash_lookup = self._hash_built and self._hash_probed
        f.sliding_window = f.sliding_window or (self._mentions_window and bool(f.loop_paths))
        return f

    # Loops

    def visit_For(self, node: ast.For) -> None:
        self.visit(node.target)
        self.visit(node.iter)
        self._check_sliding_window(node)
        self._enter_loop(halving=False)
        for stmt in node.body:
            self.visit(stmt)
        self._exit_loop()
        for stmt in node.orelse:
            self.visit(stmt)

    visit_AsyncFor = visit_For

    def visit_While(self, node: ast.While) -> None:
        binary_search = _is_binary_search_loop(node)
        if binary_search:
            self.features.manual_binary_search = True
        self._check_two_pointer(node)
        self._enter_loop(halving=binary_search or _is_shrinking_loop(node))
        self.visit(node.test)
        for stmt in node.body:
            self.visit(stmt)
        self._exit_loop()
        for stmt in node.orelse:
            self.visit(stmt)

    def _visit_comprehension(self, node: ast.AST, elts: list[ast.AST]) -> None:
        generators = node.generators  # type: ignore[attr-defined]
        for gen in generators:
            self.visit(gen.iter)
            self._enter_loop(halving=False)
            self.visit(gen.target)
            for cond in gen.ifs:
                self.visit(cond)
        for elt in elts:
            self.visit(elt)
        for _ in generators:
            self._exit_loop()

    def visit_ListComp(self, node: ast.ListComp) -> None:
        self.features.allocates_linear = True
        if isinstance(node.elt, ast.ListComp) or self._is_list_repeat(node.elt):
            self.features.allocates_2d = True
        self._visit_comprehension(node, [node.elt])

    def visit_SetComp(self, node: ast.SetComp) -> None:
        self.features.allocates_linear = True
        self._hash_built = True
        self._visit_comprehension(node, [node.elt])

    def visit_DictComp(self, node: ast.DictComp) -> None:
        self.features.allocates_linear = True
        self._hash_built = True
        self._visit_comprehension(node, [node.key, node.value])

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> None:
        self._visit_comprehension(node, [node.elt])

    def visit_Break(self, node: ast.Break) -> None:
        if self._path:
            self.features.early_exit = True

    def visit_Return(self, node: ast.Return) -> None:
        if self._path:
            self.features.early_exit = True
        self.generic_visit(node)

    # Functions

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        for decorator in node.decorator_list:
            self.visit(decorator)
        info = RecursiveFunction(name=node.name)
        for decorator in node.decorator_list:
            target = decorator.func if isinstance(decorator, ast.Call) else decorator
            if _name_of(target) in _MEMO_DECORATORS:
                info.memoized = True
                params = [a.arg for a in node.args.args if a.arg not in ("self", "cls")]
                info.memo_2d = len(params) >= 2
        frame = _Frame(info=info)
        saved_path, self._path = self._path, []
        self._frames.append(frame)
        for stmt in node.body:
            self.visit(stmt)
        self._frames.pop()
        self._path = saved_path
        if info.self_calls:
            info.extends_and_retracts = bool(frame.grown & frame.shrunk)
            self.features.recursive_functions.append(info)

    visit_AsyncFunctionDef = visit_FunctionDef

    # Expressions

    def visit_Name(self, node: ast.Name) -> None:
        self._names.add(node.id)
        if "window" in node.id.lower():
            self._mentions_window = True

    def visit_Attribute(self, node: ast.Attribute) -> None:
        self._names.add(node.attr)
        self.generic_visit(node)

    def visit_Dict(self, node: ast.Dict) -> None:
        self._hash_built = True
        self.generic_visit(node)

    def visit_Set(self, node: ast.Set) -> None:
        self._hash_built = True
        self.generic_visit(node)

    def visit_Compare(self, node: ast.Compare) -> None:
        if any(isinstance(op, (ast.In, ast.NotIn)) for op in node.ops):
            self._hash_probed = True
            if self._frames and any(_is_memo_name(_name_of(c)) for c in node.comparators):
                self._frames[-1].info.memoized = True
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if isinstance(node.op, ast.Mult) and self._is_list_repeat(node):
            self.features.allocates_linear = True
            inner = node.left if isinstance(node.left, ast.List) else node.right
            if isinstance(inner, ast.List) and any(isinstance(e, ast.List) for e in inner.elts):
                self.features.allocates_2d = True
        self.generic_visit(node)

    def visit_Subscript(self, node: ast.Subscript) -> None:
        root = _root_name(node)
        two_dimensional = isinstance(node.value, ast.Subscript) or isinstance(node.slice, ast.Tuple)
        if self._frames and _is_memo_name(root):
            info = self._frames[-1].info
            info.memoized = True
            info.memo_2d = info.memo_2d or two_dimensional
        if root and (root.startswith("dp") or root == "table") and self._path:
            if self._has_recurrence_index(node):
                self.features.dp_table = True
                if two_dimensional:
                    self.features.dp_table_2d = True
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        name = _name_of(node.func)
        if name:
            self._classify_call(node, name)
        self.generic_visit(node)

    def _classify_call(self, node: ast.Call, name: str) -> None:
        f = self.features
        is_method = isinstance(node.func, ast.Attribute)

        for frame in reversed(self._frames):
            if frame.info.name != name:
                continue
            receiver = node.func.value if is_method else None  # type: ignore[union-attr]
            if is_method and _name_of(receiver) not in ("self", "cls"):
                break
            frame.info.self_calls += 1
            if self._path:
                frame.info.calls_in_loop = True
            args = [*node.args, *(kw.value for kw in node.keywords)]
            if any(_halves_argument(arg) for arg in args):
                frame.info.halves_input = True
            break

        if name in ("sorted", "sort"):
            f.sort_sites.append(self._current_path())
            if name == "sorted":
                f.allocates_linear = True
        elif name in _SEARCH_CALLS:
            f.search_sites.append(self._current_path())
        elif name in _HEAP_CALLS:
            f.uses_heap = True
        elif name in _QUEUE_CALLS:
            self._uses_queue = True
        elif name in _HASH_BUILDERS:
            self._hash_built = True
            if name == "Counter":
                self._hash_probed = True
        elif name == "get" and is_method:
            self._hash_probed = True
        elif name in ("list", "deque") and node.args:
            f.allocates_linear = True

        if is_method:
            owner = _root_name(node.func.value)  # type: ignore[union-attr]
            if name in _GROW_METHODS:
                if self._path:
                    f.allocates_linear = True
                if self._frames and owner:
                    self._frames[-1].grown.add(owner)
            elif name in _SHRINK_METHODS:
                if name == "pop" and not node.args:
                    self._uses_stack = True
                if self._frames and owner:
                    self._frames[-1].shrunk.add(owner)

    # Shape checks

    @staticmethod
    def _is_list_repeat(node: ast.AST) -> bool:
        if not isinstance(node, ast.BinOp) or not isinstance(node.op, ast.Mult):
            return False
        if isinstance(node.left, ast.List):
            return not isinstance(node.right, ast.Constant)
        if isinstance(node.right, ast.List):
            return not isinstance(node.left, ast.Constant)
        return False

    @staticmethod
    def _has_recurrence_index(node: ast.AST) -> bool:
        while isinstance(node, ast.Subscript):
            for n in ast.walk(node.slice):
                if isinstance(n, ast.BinOp) and isinstance(n.op, (ast.Add, ast.Sub)):
                    return True
            node = node.value
        return False

    def _check_two_pointer(self, node: ast.While) -> None:
        test = node.test
        if not (
            isinstance(test, ast.Compare)
            and len(test.ops) == 1
            and isinstance(test.ops[0], (ast.Lt, ast.LtE))
            and isinstance(test.left, ast.Name)
            and isinstance(test.comparators[0], ast.Name)
        ):
            return
        low, high = test.left.id, test.comparators[0].id
        moved_up = moved_down = False
        for n in ast.walk(node):
            if isinstance(n, ast.AugAssign) and isinstance(n.target, ast.Name):
                if n.target.id == low and isinstance(n.op, ast.Add):
                    moved_up = True
                elif n.target.id == high and isinstance(n.op, ast.Sub):
                    moved_down = True
        if moved_up and moved_down:
            self.features.two_pointer = True

    def _check_sliding_window(self, node: ast.For) -> None:
        evicted: set[str] = set()
        advanced: set[str] = set()
        for n in ast.walk(node):
            if not isinstance(n, ast.AugAssign):
                continue
            if isinstance(n.op, ast.Sub) and isinstance(n.value, ast.Subscript):
                if isinstance(n.value.slice, ast.Name):
                    evicted.add(n.value.slice.id)
            if isinstance(n.op, ast.Add) and isinstance(n.target, ast.Name):
                if _is_constant(n.value, 1):
                    advanced.add(n.target.id)
        if evicted & advanced:
            self.features.sliding_window = True


def _extract_python_features(source: str) -> CodeFeatures:
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError) as exc:
        raise UnparseableSourceError(f"Python source does not parse: {exc}") from exc
    visitor = _PythonFeatureVisitor()
    visitor.visit(tree)
    return visitor.finish()


# --- Brace-language front end ---

_LOOP_KEYWORDS = frozenset({"for", "while", "do", "loop", "foreach", "repeat"})
_NOT_FUNCTION_NAMES = frozenset(
    {
        "if", "else", "for", "while", "do", "switch", "case", "return", "break", "continue",
        "class", "struct", "namespace", "template", "typename", "new", "delete", "try",
        "catch", "throw", "func", "fn", "fun", "function", "sizeof", "synchronized", "using",
        "foreach", "loop", "match", "when", "guard", "defer", "go", "select", "lock", "yield",
        "await", "typeof", "instanceof", "in", "of", "const", "let", "var", "import",
        "package", "super", "this", "self", "assert", "static_assert",
    }
)

_TOKEN_RE = re.compile(r"[A-Za-z_]\w*|[{}();]")

_FUNCTION_DECL_RES = [
    # Go / Swift: func name(  and  func (recv T) name(
    re.compile(r"\bfunc\s+(?:\([^)]*\)\s*)?(\w+)\s*(?:\[[^\]]*\]\s*)?(?:<[^>]*>\s*)?\("),
    # Rust
    re.compile(r"\bfn\s+(\w+)\s*(?:<[^>{;]*>)?\s*\("),
    # Kotlin
    re.compile(r"\bfun\s+(?:<[^>]*>\s*)?(?:\w+\.)?(\w+)\s*\("),
    # JavaScript / TypeScript
    re.compile(r"\bfunction\b\s*\*?\s*(\w+)\s*(?:<[^>]*>\s*)?\("),
    re.compile(r"\b(?:const|let|var)\s+(\w+)\s*(?::[^=]+)?=\s*(?:async\s+)?(?:function\b[^(]*)?\("),
    # C, C++, Java, C#, and class methods: optional type tokens then name(
    re.compile(r"(?m)^[ \t]*(?:[\w:<>,\[\]*&?.]+[ \t]+)*[*&]*(\w+)\s*\("),
]

_SIGNATURE_CONTINUATIONS = (":", "->", "throws", "where", "=>")
_CONTROL_WORD_RE = re.compile(r"\b(?:if|for|while|return|switch|else)\b")

_HALVING_UPDATE_RE = re.compile(
    r"\b\w+\s*(?:/=\s*2\b|>>=\s*1\b|\*=\s*2\b|<<=\s*1\b)"
    r"|\b(\w+)\s*=\s*\1\s*(?:/\s*2\b|>>\s*1\b|\*\s*2\b)"
)
_BS_MID_RE = re.compile(
    r"\bmid\w*\s*:?=\s*[^;\n]*\b(?:lo|hi|low|high|left|right|l|r|start|end|begin)\b"
)
_BS_MOVE_RE = re.compile(
    r"\b(?:lo|low|left|l|start|begin)\s*=\s*mid\w*\s*\+\s*1"
    r"|\b(?:hi|high|right|r|end)\s*=\s*mid\w*\b"
)
_HALVING_ARG_RE = re.compile(r"/\s*2\b|>>\s*1\b|\bmid\w*\b|\bmiddle\b")

_SORT_RE = re.compile(
    r"\bsort\s*\(|\.sort\s*\(|\bsorted\s*\(|\.sorted\s*\(|\bCollections\.sort\b"
    r"|\bArrays\.sort\b|\bsort\.(?:Slice|SliceStable|Ints|Strings|Float64s|Sort|Stable)\s*\("
    r"|\bqsort\s*\(|\.sort_by\w*\s*\(|\.sort_unstable\w*\s*\(|\.OrderBy\w*\s*\(|\bslices\.Sort\w*\s*\("
)
_SEARCH_CALL_RE = re.compile(
    r"\b(?:lower_bound|upper_bound|binary_search|binarySearch|BinarySearch|bsearch)\s*\("
    r"|\bsort\.Search\w*\s*\(|\bslices\.BinarySearch\w*\s*\("
)
_HASH_CONTAINER_RE = re.compile(
    r"\bunordered_map\s*<|\bunordered_set\s*<|\bmap\s*<|\bset\s*<|\bHashMap\b|\bHashSet\b"
    r"|\bLinkedHashMap\b|\bDictionary\s*<|\bnew\s+Map\b|\bnew\s+Set\b|\bmap\[|\bMap<|\bSet<"
    r"|\b(?:mutableMapOf|hashMapOf|mutableSetOf|hashSetOf|mapOf|setOf)\b|\bBTreeMap\b"
)
_HASH_PROBE_RE = re.compile(
    r"\.(?:count|find|contains|containsKey|has|get|getOrDefault|ContainsKey|TryGetValue"
    r"|contains_key|entry)\s*\(|,\s*ok\s*:?=\s*\w+\["
)
_HEAP_RE = re.compile(r"\bpriority_queue\b|\bPriorityQueue\b|\bBinaryHeap\b|\bheap\.(?:Push|Pop|Init)\b")
_QUEUE_RE = re.compile(
    r"\bqueue\s*<|\bdeque\s*<|\bQueue\b|\bArrayDeque\b|\bVecDeque\b|\bLinkedList\b"
    r"|\.shift\s*\(\s*\)|\.poll\s*\(|\.popleft\s*\("
)
_STACK_RE = re.compile(r"\bstack\s*<|\bStack\b|\.pop\s*\(|\.pop_back\s*\(")
_VISITED_RE = re.compile(r"\b(?:visited|seen|explored|discovered)\w*\b", re.IGNORECASE)
_GRAPH_RE = re.compile(r"\b(?:adj\w*|graph|neighbors|neighbours|edges|children)\b", re.IGNORECASE)
_DP_RECURRENCE_RE = re.compile(r"\bdp\w*\s*(?:\[[^\]]*\]\s*)*\[[^\]]*[+-]\s*\w+[^\]]*\]")
_DP_2D_RE = re.compile(r"\bdp\w*\s*\[[^\]]*\]\s*\[")
_ALLOC_2D_RE = re.compile(
    r"vector\s*<\s*vector|\bnew\s+\w+\s*\[[^\]]+\]\s*\[|\[\]\s*\[\]|\bmake\s*\(\s*\[\]\[\]"
    r"|\b\w+\s*\[\s*\w+\s*\]\s*\[\s*\w+\s*\]\s*;|Array\.from\([^;]*(?:new\s+)?Array\("
    r"|\bvec!\s*\[\s*vec!|Array\(\s*\w+\s*\)\.fill\([^)]*\)\.map"
)
_ALLOC_LINEAR_RE = re.compile(
    r"\bvector\s*<[^;>]*>\s*\w+\s*\(|\bnew\s+\w+\s*\[\s*\w|\bnew\s+(?:ArrayList|HashMap|HashSet"
    r"|LinkedList|ArrayDeque|Array|Map|Set|List|Dictionary)\b|\bmake\s*\(\s*(?:\[\]|map)"
    r"|\bvec!\s*\[|\bVec::(?:new|with_capacity)\b|\bmalloc\s*\(|\bcalloc\s*\("
)
_GROW_CALL_RE = re.compile(
    r"\.(?:push_back|emplace_back|push|add|append|insert|put|offer)\s*\(|\bappend\s*\("
)
_SHRINK_CALL_RE = re.compile(r"\.(?:pop_back|pop|remove|removeLast|removeAt|truncate|poll)\s*\(")
_MEMO_ACCESS_RE = re.compile(
    r"\b(?:memo|cache|dp|table)\w*\s*(?:\[|\.(?:get|count|find|contains|containsKey|has|put"
    r"|set|insert|getOrDefault)\b)"
    r"|\b\w*(?:memo|Memo)\w*\b"
)
_MEMO_2D_RE = re.compile(r"\b(?:memo|dp|cache|table)\w*\s*\[[^\]]*\]\s*\[")
_WINDOW_RE = re.compile(r"\bwindow\w*|\b\w*Window\w*\b")
_EVICT_RE = re.compile(r"-=\s*\w+\s*\[\s*(\w+)\s*(\+\+)?\s*\]")
_EARLY_EXIT_RE = re.compile(r"\b(?:break|return)\b")
_TWO_POINTER_HEADER_RES = [
    re.compile(r"\bwhile\s*\(\s*(\w+)\s*<=?\s*(\w+)\s*\)"),
    re.compile(r"\bfor\s+(\w+)\s*<=?\s*(\w+)\s*\{"),
    re.compile(r"\bwhile\s+(\w+)\s*<=?\s*(\w+)\s*\{"),
]


def _increments(clean: str, name: str) -> bool:
    n = re.escape(name)
    return re.search(
        rf"\b{n}\s*\+\+|\+\+\s*{n}\b|\b{n}\s*\+=\s*1\b|\b{n}\s*=\s*{n}\s*\+\s*1\b", clean
    ) is not None


def _decrements(clean: str, name: str) -> bool:
    n = re.escape(name)
    return re.search(
        rf"\b{n}\s*--|--\s*{n}\b|\b{n}\s*-=\s*1\b|\b{n}\s*=\s*{n}\s*-\s*1\b", clean
    ) is not None


def blank_comments_and_strings(src: str, language: str) -> str:
    """Replace comments and string/char literals with spaces.

    Newlines are kept so offsets and line numbers stay aligned with the
    original source.
    """
    out = list(src)
    n = len(src)
    backtick_strings = language in ("javascript", "typescript", "go")
    single_quoted_strings = language in ("javascript", "typescript")

    def blank(start: int, end: int) -> None:
        for k in range(start, end):
            if out[k] != "\n":
                out[k] = " "

    i = 0
    while i < n:
        ch = src[i]
        nxt = src[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "*":
            end = src.find("*/", i + 2)
            end = n if end == -1 else end + 2
        elif ch == "/" and nxt == "/":
            end = src.find("\n", i)
            end = n if end == -1 else end
        elif ch == '"' or (ch == "`" and backtick_strings) or (ch == "'" and single_quoted_strings):
            end = _string_end(src, i, ch)
        elif ch == "'":
            end = _char_literal_end(src, i)
            if end is None:
                i += 1
                continue
        else:
            i += 1
            continue
        blank(i, end)
        i = end
    return "".join(out)


def _string_end(src: str, start: int, quote: str) -> int:
    j, n = start + 1, len(src)
    while j < n:
        c = src[j]
        if c == "\\":
            j += 2
            continue
        if c == quote:
            return j + 1
        if c == "\n" and quote != "`":
            return j
        j += 1
    return n


def _char_literal_end(src: str, start: int) -> int | None:
    j = start + 1
    if j < len(src) and src[j] == "\\":
        j += 2
    else:
        j += 1
    end = src.find("'", j, j + 8)
    if end == -1 or "\n" in src[start:end]:
        return None
    return end + 1


def _match_paren(clean: str, open_pos: int) -> int | None:
    depth = 0
    for k in range(open_pos, len(clean)):
        c = clean[k]
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
            if depth == 0:
                return k
    return None


def _body_start_after(clean: str, start: int) -> int | None:
    """Position of the `{` that opens a body right after a signature."""
    m = re.compile(r"[{};]").search(clean, start)
    if m is None or m.group() != "{":
        return None
    tail = clean[start : m.start()].strip()
    if re.search(r"=(?!>)", tail) or _CONTROL_WORD_RE.search(tail):
        return None
    if "\n" in tail and not tail.startswith(_SIGNATURE_CONTINUATIONS):
        return None
    return m.start()


def _find_function_bodies(clean: str) -> dict[int, str]:
    bodies: dict[int, str] = {}
    for rx in _FUNCTION_DECL_RES:
        for m in rx.finditer(clean):
            name = m.group(1)
            if name in _NOT_FUNCTION_NAMES:
                continue
            open_paren = clean.find("(", m.end(1))
            close = _match_paren(clean, open_paren) if open_paren != -1 else None
            if close is None:
                continue
            body = _body_start_after(clean, close + 1)
            if body is not None:
                bodies.setdefault(body, name)
    return bodies


@dataclass
class _Block:
    start: int
    body: int = -1
    end: int = -1
    parent: int | None = None
    halving: bool = False
    name: str = ""


def _scan_blocks(
    clean: str, function_bodies: dict[int, str], language: str = ""
) -> tuple[list[_Block], list[_Block]]:
    """Single pass over structural tokens; returns (loops, functions).

    A `;` at the keyword's paren depth ends a brace-less loop, except in Go
    where `for init; cond; post {` always runs to its brace.
    """
    header_runs_to_brace = language == "go"
    loops: list[_Block] = []
    functions: list[_Block] = []
    stack: list[tuple[str, int]] = []
    pending: tuple[int, int] | None = None  # (keyword position, paren depth)
    paren = 0

    for m in _TOKEN_RE.finditer(clean):
        tok, pos = m.group(), m.start()
        if tok == "(":
            paren += 1
        elif tok == ")":
            paren = max(paren - 1, 0)
        elif tok == ";":
            if pending is not None and paren == pending[1] and not header_runs_to_brace:
                pending = None
        elif tok == "{":
            if pos in function_bodies:
                functions.append(_Block(start=pos, body=pos, name=function_bodies[pos]))
                stack.append(("func", len(functions) - 1))
            elif pending is not None and paren == pending[1]:
                parent = next((idx for kind, idx in reversed(stack) if kind == "loop"), None)
                loops.append(_Block(start=pending[0], body=pos, parent=parent))
                stack.append(("loop", len(loops) - 1))
                pending = None
            else:
                stack.append(("block", -1))
        elif tok == "}":
            if not stack:
                raise UnparseableSourceError("Unbalanced braces: unexpected '}'")
            kind, idx = stack.pop()
            if kind == "loop":
                loops[idx].end = pos
            elif kind == "func":
                functions[idx].end = pos
            pending = None
        elif tok in _LOOP_KEYWORDS:
            pending = (pos, paren)

    if stack:
        raise UnparseableSourceError("Unbalanced braces: missing '}'")
    return loops, functions


def _extract_brace_features(source: str, language: str) -> CodeFeatures:
    clean = blank_comments_and_strings(source, language)
    if not clean.strip():
        raise UnparseableSourceError("Source contains only comments")
    loops, functions = _scan_blocks(clean, _find_function_bodies(clean), language)
    f = CodeFeatures(language=language)

    # Loop topology. A loop only owns the text outside its nested loops.
    for idx, loop in enumerate(loops):
        header = clean[loop.start : loop.body]
        body = clean[loop.body : loop.end]
        for child in loops:
            if child.parent == idx:
                offset = loop.body
                body = (
                    body[: child.start - offset]
                    + " " * (child.end - child.start)
                    + body[child.end - offset :]
                )
        binary_search = bool(_BS_MID_RE.search(body) and _BS_MOVE_RE.search(body))
        if binary_search:
            f.manual_binary_search = True
        loop.halving = binary_search or bool(
            _HALVING_UPDATE_RE.search(header) or _HALVING_UPDATE_RE.search(body)
        )

    def path_of(idx: int | None) -> LoopPath:
        linear = halving = 0
        while idx is not None:
            if loops[idx].halving:
                halving += 1
            else:
                linear += 1
            idx = loops[idx].parent
        return (linear, halving)

    def innermost_loop(pos: int, within: _Block | None = None) -> int | None:
        best: int | None = None
        for idx, loop in enumerate(loops):
            if loop.body < pos < loop.end:
                if within is not None and not (within.start < loop.start and loop.end < within.end):
                    continue
                if best is None or loop.body > loops[best].body:
                    best = idx
        return best

    for idx in range(len(loops)):
        path = path_of(idx)
        f.loop_paths.append(path)
        f.max_loop_depth = max(f.max_loop_depth, sum(path))

    for m in _SORT_RE.finditer(clean):
        f.sort_sites.append(path_of(innermost_loop(m.start())))
    for m in _SEARCH_CALL_RE.finditer(clean):
        f.search_sites.append(path_of(innermost_loop(m.start())))

    # Recursion
    for func in functions:
        info = RecursiveFunction(name=func.name)
        body = clean[func.start : func.end]
        for call in re.finditer(rf"\b{re.escape(func.name)}\s*\(", clean[: func.end]):
            if call.start() <= func.start:
                continue
            info.self_calls += 1
            if innermost_loop(call.start(), within=func) is not None:
                info.calls_in_loop = True
            close = _match_paren(clean, call.end() - 1)
            args = clean[call.end() : close] if close is not None else ""
            if _HALVING_ARG_RE.search(args):
                info.halves_input = True
        if not info.self_calls:
            continue
        info.memoized = bool(_MEMO_ACCESS_RE.search(body))
        info.memo_2d = info.memoized and bool(_MEMO_2D_RE.search(body))
        info.extends_and_retracts = bool(_GROW_CALL_RE.search(body) and _SHRINK_CALL_RE.search(body))
        f.recursive_functions.append(info)

    def in_any_loop(pos: int) -> bool:
        return innermost_loop(pos) is not None

    # Named patterns
    f.uses_heap = bool(_HEAP_RE.search(clean))
    f.hash_lookup = bool(_HASH_CONTAINER_RE.search(clean) and _HASH_PROBE_RE.search(clean))
    uses_queue = bool(_QUEUE_RE.search(clean))
    uses_stack = bool(_STACK_RE.search(clean))
    f.graph_traversal = bool(
        _VISITED_RE.search(clean)
        and _GRAPH_RE.search(clean)
        and (f.has_recursion or uses_queue or uses_stack)
    )
    f.dp_table = any(in_any_loop(m.start()) for m in _DP_RECURRENCE_RE.finditer(clean))
    f.dp_table_2d = f.dp_table and any(in_any_loop(m.start()) for m in _DP_2D_RE.finditer(clean))
    f.early_exit = any(in_any_loop(m.start()) for m in _EARLY_EXIT_RE.finditer(clean))

    for rx in _TWO_POINTER_HEADER_RES:
        for m in rx.finditer(clean):
            low, high = m.group(1), m.group(2)
            if low != high and _increments(clean, low) and _decrements(clean, high):
                f.two_pointer = True

    if loops:
        if _WINDOW_RE.search(clean):
            f.sliding_window = True
        for m in _EVICT_RE.finditer(clean):
            if m.group(2) or _increments(clean, m.group(1)):
                f.sliding_window = True

    # Allocation
    f.allocates_2d = bool(_ALLOC_2D_RE.search(clean))
    f.allocates_linear = f.allocates_2d or bool(_ALLOC_LINEAR_RE.search(clean)) or any(
        in_any_loop(m.start()) for m in _GROW_CALL_RE.finditer(clean)
    )
    return f
