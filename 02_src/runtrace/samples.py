"""Catalog of sample programs for trying the tracer."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Sample:
    """A runnable example program."""

    id: str
    name: str
    description: str
    complexity: str  # basic | intermediate | advanced
    code: str
    hint: str


_DELAY = '''import time


def artificial_delay(seconds=0.05):
    print("artificial_delay starting")
    time.sleep(seconds)
    print("artificial_delay completed")

'''


SAMPLES: list[Sample] = [
    Sample(
        id="simple",
        name="Simple Function Call",
        description="Basic function with a single call",
        complexity="basic",
        code=_DELAY + '''
def main():
    print("Hello world!")
    artificial_delay(0.2)
    print("Finished processing")


main()
''',
        hint="A main node with artificial_delay as its only child.",
    ),
    Sample(
        id="nested",
        name="Nested Functions",
        description="Functions defined inside other functions",
        complexity="basic",
        code=_DELAY + '''
def outer():
    print("Outer function starting")

    def inner():
        print("Inner function starting")
        artificial_delay(0.1)
        print("Inner function completed")
        return "inner result"

    artificial_delay(0.1)
    print("Outer function calling inner")
    inner()
    print("Outer function completed")


print("Main execution calling outer function")
outer()
print("Execution complete")
''',
        hint="outer is the root and inner is nested under it.",
    ),
    Sample(
        id="multiple-functions",
        name="Multiple Function Calls",
        description="Functions calling each other in sequence",
        complexity="intermediate",
        code=_DELAY + '''
def first():
    print("First function starting")
    artificial_delay()
    print("First function calling second")
    second()
    print("First function completed")


def second():
    print("Second function starting")
    artificial_delay()
    print("Second function calling third")
    third()
    print("Second function completed")


def third():
    print("Third function starting")
    artificial_delay()
    print("Third function completed")


first()
''',
        hint="A first -> second -> third chain.",
    ),
    Sample(
        id="callbacks",
        name="Timer Callbacks",
        description="Callbacks scheduled on the event loop",
        complexity="intermediate",
        code=_DELAY + '''import asyncio


def process_result(data):
    print("process_result starting")
    artificial_delay()
    print("Processing completed with", data["result"])
    print("process_result completed")


def fetch_data(loop, callback, done):
    print("fetch_data starting")

    def on_timer():
        print("timer callback starting")
        callback({"result": "Success!"})
        done.set_result(True)
        print("timer callback completed")

    loop.call_later(0.1, on_timer)
    print("fetch_data completed")


async def main():
    print("main starting")
    loop = asyncio.get_running_loop()
    done = loop.create_future()
    print("main calling fetch_data")
    fetch_data(loop, process_result, done)
    await done
    print("main completed")


asyncio.run(main())
''',
        hint="on_timer runs later but stays under fetch_data, where it was scheduled.",
    ),
    Sample(
        id="async-await",
        name="Async/Await",
        description="Coroutines awaited in sequence and concurrently",
        complexity="intermediate",
        code='''import asyncio


async def first_operation():
    print("first_operation starting")
    await asyncio.sleep(0.1)
    print("first_operation completed")
    return "first done"


async def second_operation():
    print("second_operation starting")
    await asyncio.sleep(0.05)
    print("second_operation completed")
    return "second done"


async def main():
    print("main starting")
    print("main calling first_operation")
    await first_operation()
    print("main calling second_operation")
    await second_operation()
    results = await asyncio.gather(first_operation(), second_operation())
    print("gathered", results)
    print("main completed")


asyncio.run(main())
''',
        hint="Both operations appear twice under main; the gathered pair overlaps in time.",
    ),
    Sample(
        id="recursion",
        name="Recursion",
        description="A recursive function produces one node per activation",
        complexity="basic",
        code='''def factorial(n):
    if n <= 1:
        return 1
    return n * factorial(n - 1)


def main():
    print("factorial(4) =", factorial(4))


main()
''',
        hint="Four nested factorial nodes, each with a distinct id.",
    ),
    Sample(
        id="generators",
        name="Generator Functions",
        description="Using generator functions with yield statements",
        complexity="advanced",
        code=_DELAY + '''
def number_generator():
    print("Generator started")
    artificial_delay()
    yield 1
    print("After first yield")
    artificial_delay()
    yield 2
    print("After second yield")
    artificial_delay()
    yield 3
    print("Generator complete")


def process_generator(generator):
    print("Processing generator")
    for value in generator:
        artificial_delay(0.02)
        print("Generated value:", value)
    print("Generator processing complete")


def main():
    print("Program started")
    generator = number_generator()
    process_generator(generator)
    print("Program complete")


main()
''',
        hint=(
            "number_generator runs under process_generator; the delays between "
            "values belong to process_generator, not the suspended generator."
        ),
    ),
    Sample(
        id="lambdas",
        name="Lambdas",
        description="Anonymous functions traced as calls",
        complexity="basic",
        code='''def main():
    square = lambda x: x * x
    values = list(map(lambda v: v + 1, [1, 2, 3]))
    print("square(3) =", square(3))
    print("values =", values)


main()
''',
        hint="Lambda invocations appear as call nodes under main.",
    ),
    Sample(
        id="classes",
        name="Class Methods",
        description="Methods are traced with their qualified names",
        complexity="intermediate",
        code='''class Counter:
    def __init__(self):
        self.value = 0

    def increment(self, step=1):
        self.value += step
        return self.value


def main():
    counter = Counter()
    for _ in range(3):
        counter.increment()
    print("counter =", counter.value)


main()
''',
        hint="Counter.__init__ and three Counter.increment nodes under main.",
    ),
    Sample(
        id="threads",
        name="Thread Timer",
        description="A threading.Timer callback",
        complexity="advanced",
        code='''import threading


def tick():
    print("tick fired")


def main():
    print("main starting")
    timer = threading.Timer(0.05, tick)
    timer.start()
    print("main completed")


main()
''',
        hint="tick appears as a callback under main even though main returned first.",
    ),
    Sample(
        id="error",
        name="Uncaught Exception",
        description="A failure still closes every open activation",
        complexity="basic",
        code='''def risky():
    print("risky starting")
    raise ValueError("something went wrong")


def main():
    print("main calling risky")
    risky()


main()
''',
        hint="main and risky are both completed; the traceback is in the log.",
    ),
    Sample(
        id="dynamic",
        name="Dynamic Code",
        description="Code created at runtime with exec is not traced",
        complexity="advanced",
        code='''def main():
    namespace = {}
    exec("def generated():\\n    return 42", namespace)
    print("generated() =", namespace["generated"]())


main()
''',
        hint="Only main is traced; the generated function is invisible to the rewriter.",
    ),
]


def get_sample(sample_id: str) -> Sample | None:
    """Find a sample by id."""
    for sample in SAMPLES:
        if sample.id == sample_id:
            return sample
    return None
