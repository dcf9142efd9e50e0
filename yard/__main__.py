import argparse
import logging
import traceback

import yard

EXIT_COMMAND = "exit"
BANNER = """\
Welcome to yard!
Please enter your calculation with multiple operations allowed, including parentheses.
Operators: + for addition, - for subtraction, * for multiplication, / for division, ^ for exponentiation
Functions: sin(x), cos(x), tan(x), sqrt(x)
Type 'exit' to quit the program."""


def non_negative(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or more, got {n}")
    return n


def calculate(src: str, precision: int = 6, postfix: bool = False) -> bool:
    try:
        tokens, tree = yard.compile_expression(src)
        if postfix:
            print(f"Postfix: {yard.pretty_postfix(tokens)}")
        result = float(tree.evaluate())
    except yard.YardError as e:
        print(f"Error: {e}")
        print("Please check your input and try again.")
        return False
    except Exception:
        traceback.print_exc()
        return False
    print(f"Result: {result:.{precision}f}")
    return True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="yard", description="Evaluate arithmetic expressions.")
    parser.add_argument("-c", dest="command", metavar="EXPR", help="evaluate EXPR and exit")
    parser.add_argument("-p", "--precision", type=non_negative, default=6, help="decimal places in results")
    parser.add_argument("--postfix", action="store_true", help="also print the postfix form")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command is not None:
        return 0 if calculate(args.command, args.precision, args.postfix) else 1

    print(BANNER)
    while True:
        try:
            src = input("Enter calculation: ")
        except (EOFError, KeyboardInterrupt):
            print()
            break

        src = src.strip()
        if src.lower() == EXIT_COMMAND:
            break
        calculate(src, args.precision, args.postfix)

    print("Exiting the calculator. Goodbye!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
