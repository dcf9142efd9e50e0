import abc
import dataclasses
import enum
import logging
import re
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class YardError(Exception):
    message = "invalid expression"

    def __init__(self, detail: Any = None, position: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.position = position
        # function calls the error travelled out of, innermost first
        self.context: list[str] = []

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        res = self.message
        if self.detail is not None:
            res += f": {self.detail}"
        if self.position is not None:
            res += f" @ {self.position}"
        for call in self.context:
            res += f" (in {call})"
        return res


class InvalidCharacter(YardError, ValueError):
    message = "invalid character"


class UnmatchedFunctionParens(YardError, ValueError):
    message = "unmatched function parentheses"


class InvalidToken(YardError, ValueError):
    message = "invalid token"


class MismatchedParentheses(YardError, ValueError):
    message = "mismatched parentheses"


class InsufficientOperands(YardError, ValueError):
    message = "insufficient values for operation"


class DivisionByZero(YardError, ZeroDivisionError):
    message = "cannot divide by zero"


class UnsupportedFunction(YardError, ValueError):
    message = "unsupported function"


class MalformedExpression(YardError, ValueError):
    message = "error evaluating expression"


@contextmanager
def inside(call: str) -> Iterator[None]:
    """Tag any YardError raised in the block with the enclosing call."""
    try:
        yield
    except YardError as e:
        e.context.append(call)
        raise


class Assoc(enum.Enum):
    LEFT = "L"
    RIGHT = "R"


@dataclasses.dataclass(frozen=True)
class Op:
    fn: Callable[..., np.float64]
    precedence: int
    assoc: Assoc = Assoc.LEFT
    args: int = 2


def divide(a: np.float64, b: np.float64) -> np.float64:
    if b == 0:
        raise DivisionByZero(f"{a:g} / {b:g}")
    return np.divide(a, b)


OPERATORS = {
    "+": Op(np.add, 1),
    "-": Op(np.subtract, 1),
    "*": Op(np.multiply, 2),
    "/": Op(divide, 2),
    "^": Op(np.power, 3, Assoc.RIGHT),
    # prefix minus, binds looser than ^ so -2^2 == -(2^2)
    "u-": Op(np.negative, 3, Assoc.RIGHT, 1),
}
FUNCTIONS = {
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
    "sqrt": np.sqrt,
}

NUMBER = re.compile(r"[0-9.]+")
FUNCTION_CALL = re.compile(rf"({'|'.join(FUNCTIONS)})\(")


def call_function(name: str, value: float) -> np.float64:
    try:
        fn = FUNCTIONS[name]
    except KeyError:
        raise UnsupportedFunction(name) from None
    with np.errstate(all="ignore"):
        return fn(np.float64(value))


class Token:
    pass


@dataclasses.dataclass(frozen=True)
class Number(Token):
    value: float

    def __str__(self) -> str:
        return f"{self.value:g}"


@dataclasses.dataclass(frozen=True)
class Operator(Token):
    symbol: str

    def __str__(self) -> str:
        return self.symbol


@dataclasses.dataclass(frozen=True)
class LeftParen(Token):
    def __str__(self) -> str:
        return "("


@dataclasses.dataclass(frozen=True)
class RightParen(Token):
    def __str__(self) -> str:
        return ")"


@dataclasses.dataclass(frozen=True)
class FunctionCall(Token):
    name: str
    argument: str
    # infix out of tokenize(), postfix out of to_postfix()
    body: tuple[Token, ...] = ()

    def __str__(self) -> str:
        return f"{self.name}({self.argument})"


def lookup(token: Operator) -> Op:
    try:
        return OPERATORS[token.symbol]
    except KeyError:
        raise InvalidToken(token.symbol) from None


def closing_paren(src: str, start: int) -> int | None:
    depth = 1
    for i in range(start, len(src)):
        if src[i] == "(":
            depth += 1
        elif src[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    return None


def tokenize(src: str, offset: int = 0) -> list[Token]:
    """Split a whitespace-free expression into tokens.

    Function calls come out as a single FunctionCall token whose argument
    has already been tokenized. ``offset`` shifts reported positions when
    tokenizing an argument in place.
    """
    tokens: list[Token] = []
    p = 0
    while p < len(src):
        if m := NUMBER.match(src, p):
            try:
                value = float(m.group())
            except ValueError:
                raise InvalidToken(m.group(), offset + p) from None
            tokens.append(Number(value))
            p = m.end()
        elif m := FUNCTION_CALL.match(src, p):
            end = closing_paren(src, m.end())
            if end is None:
                raise UnmatchedFunctionParens(src[p:], offset + p)
            argument = src[m.end():end]
            with inside(src[p:end + 1]):
                body = tokenize(argument, offset + m.end())
            tokens.append(FunctionCall(m.group(1), argument, tuple(body)))
            p = end + 1
        elif src[p] == "-" and (not tokens or isinstance(tokens[-1], (Operator, LeftParen))):
            tokens.append(Operator("u-"))
            p += 1
        elif src[p] in "+-*/^":
            tokens.append(Operator(src[p]))
            p += 1
        elif src[p] == "(":
            tokens.append(LeftParen())
            p += 1
        elif src[p] == ")":
            tokens.append(RightParen())
            p += 1
        else:
            raise InvalidCharacter(src[p], offset + p)
    return tokens


def pops_before(incoming: Op, top: Op) -> bool:
    if incoming.assoc is Assoc.LEFT:
        return top.precedence >= incoming.precedence
    return top.precedence > incoming.precedence


def to_postfix(tokens: Iterable[Token]) -> list[Token]:
    postfix: list[Token] = []
    stack: list[Token] = []
    for token in tokens:
        if isinstance(token, Number):
            postfix.append(token)
        elif isinstance(token, FunctionCall):
            with inside(str(token)):
                body = to_postfix(token.body)
            postfix.append(dataclasses.replace(token, body=tuple(body)))
        elif isinstance(token, Operator):
            op = lookup(token)
            if op.args == 2:
                while (
                    stack
                    and isinstance(stack[-1], Operator)
                    and pops_before(op, lookup(stack[-1]))
                ):
                    postfix.append(stack.pop())
            stack.append(token)
        elif isinstance(token, LeftParen):
            stack.append(token)
        elif isinstance(token, RightParen):
            while stack and not isinstance(stack[-1], LeftParen):
                postfix.append(stack.pop())
            if not stack:
                raise MismatchedParentheses(")")
            stack.pop()
        else:
            raise InvalidToken(token)
    while stack:
        if isinstance(token := stack.pop(), LeftParen):
            raise MismatchedParentheses("(")
        postfix.append(token)
    return postfix


class Node(abc.ABC):
    @abc.abstractmethod
    def operands(self) -> tuple["Node", ...]:
        ...

    @abc.abstractmethod
    def apply(self, *args: np.float64) -> np.float64:
        ...

    def evaluate(self) -> np.float64:
        """Evaluate the tree post-order with an explicit stack.

        Depth of the tree does not touch the interpreter's recursion limit,
        so long unparenthesised chains like ``1+1+...+1`` are fine.
        """
        values: list[np.float64] = []
        # (node, operands already evaluated)
        pending: list[tuple[Node, bool]] = [(self, False)]
        try:
            while pending:
                node, ready = pending.pop()
                if ready:
                    n = len(node.operands())
                    args = values[len(values) - n:]
                    del values[len(values) - n:]
                    values.append(node.apply(*args))
                else:
                    pending.append((node, True))
                    pending.extend((child, False) for child in reversed(node.operands()))
        except YardError as e:
            # ready entries still pending are exactly the ancestors of the failing node
            for node, ready in reversed(pending):
                if ready and isinstance(node, Call):
                    e.context.append(str(node))
            raise
        return values[0]


@dataclasses.dataclass(frozen=True)
class Constant(Node):
    value: float

    def operands(self) -> tuple[Node, ...]:
        return ()

    def apply(self) -> np.float64:
        return np.float64(self.value)


@dataclasses.dataclass(frozen=True)
class Unary(Node):
    symbol: str
    operand: Node

    def operands(self) -> tuple[Node, ...]:
        return (self.operand,)

    def apply(self, a: np.float64) -> np.float64:
        with np.errstate(all="ignore"):
            return OPERATORS[self.symbol].fn(a)


@dataclasses.dataclass(frozen=True)
class Binary(Node):
    symbol: str
    left: Node
    right: Node

    def operands(self) -> tuple[Node, ...]:
        return (self.left, self.right)

    def apply(self, a: np.float64, b: np.float64) -> np.float64:
        with np.errstate(all="ignore"):
            return OPERATORS[self.symbol].fn(a, b)


@dataclasses.dataclass(frozen=True)
class Call(Node):
    name: str
    argument: str
    operand: Node

    def __str__(self) -> str:
        return f"{self.name}({self.argument})"

    def operands(self) -> tuple[Node, ...]:
        return (self.operand,)

    def apply(self, a: np.float64) -> np.float64:
        return call_function(self.name, a)


def build_tree(postfix: Iterable[Token]) -> Node:
    stack: list[Node] = []

    def take(n: int, token: Operator) -> list[Node]:
        if len(stack) < n:
            raise InsufficientOperands(token.symbol)
        return [stack.pop() for _ in range(n)][::-1]

    for token in postfix:
        if isinstance(token, Number):
            stack.append(Constant(token.value))
        elif isinstance(token, FunctionCall):
            with inside(str(token)):
                operand = build_tree(token.body)
            stack.append(Call(token.name, token.argument, operand))
        elif isinstance(token, Operator):
            if lookup(token).args == 1:
                stack.append(Unary(token.symbol, *take(1, token)))
            else:
                stack.append(Binary(token.symbol, *take(2, token)))
        else:
            raise InvalidToken(token)
    if len(stack) != 1:
        raise MalformedExpression(f"{len(stack)} values left on the stack")
    return stack[0]


def evaluate_postfix(postfix: Iterable[Token]) -> float:
    return float(build_tree(postfix).evaluate())


def compile_expression(expression: str) -> tuple[list[Token], Node]:
    src = "".join(expression.split())
    tokens = tokenize(src)
    logger.debug(f"Tokens: {' '.join(map(str, tokens))}")
    postfix = to_postfix(tokens)
    logger.debug(f"Postfix: {pretty_postfix(postfix)}")
    return postfix, build_tree(postfix)


def parse(expression: str) -> Node:
    return compile_expression(expression)[1]


def evaluate(expression: str) -> float:
    return float(parse(expression).evaluate())


def pretty_postfix(tokens: Iterable[Token]) -> str:
    res = []
    for token in tokens:
        if isinstance(token, FunctionCall):
            res.append(f"[{pretty_postfix(token.body)}] {token.name}")
        else:
            res.append(str(token))
    return " ".join(res)
