"""Pytest fixtures for Kata tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from kata.config import KataConfig
from kata.curriculum.graph import ChallengeGraph
from kata.curriculum.loader import CurriculumLoader

CERTIFICATION = """\
---
kind: certification
id: python-cert
title: Python Certification
superBlocks:
  - python-basics
---
"""

SUPERBLOCK = """\
---
kind: superblock
id: python-basics
title: Python Basics
blocks:
  - arithmetic
---
"""

BLOCK = """\
---
kind: block
id: arithmetic
title: Arithmetic
timeEstimate: 1 hour
challengeOrder:
  - add-two-numbers
  - multiply
  - greet-lab
  - heading-markup
  - shapes-project
  - python-quiz
---

# --description--

Basic operations on numbers.
"""

ADD_TWO_NUMBERS = """\
---
id: add-two-numbers
title: Add two numbers
challengeType: script
---

# --description--

Write a function `add` that returns the sum of two numbers.

# --hints--

`add(1, 1)` should return 2.

```py
add(1, 1) == 2
```

`add(0, 0)` should return 0.

```py
add(0, 0) == 0
```

`add(2, 2)` should return 4.

```py
result = add(2, 2)
assert result == 4, f"expected 4 got {result}"
```

# --seed--

## --seed-contents--

```py name=main.py
def add(a, b):
    # --editable-region--
    pass
    # --editable-region--
```

# --solutions--

```py name=main.py
def add(a, b):
    return a + b
```
"""

MULTIPLY = """\
---
id: multiply
title: Multiply
challengeType: script
prerequisites:
  - add-two-numbers
---

# --description--

Write `multiply`.

# --hints--

`multiply(3, 4)` should return 12.

```py
multiply(3, 4) == 12
```

# --seed--

## --seed-contents--

```py name=main.py
def multiply(a, b):
    pass
```

# --solutions--

```py name=main.py
def multiply(a, b):
    return a * b
```
"""

GREET_LAB = """\
---
id: greet-lab
title: Greet the world
challengeType: lab
---

# --description--

Print a greeting.

# --hints--

The program should print `Hello, world`.

```py
"Hello, world" in output
```

# --seed--

## --seed-contents--

```py name=main.py
```

# --solutions--

```py name=main.py
print("Hello, world")
```
"""

HEADING_MARKUP = """\
---
id: heading-markup
title: Add a heading
challengeType: markup
---

# --description--

Add an `h1` element.

# --hints--

The page should have a heading saying Hello.

```py
document.xpath("//h1")[0].text_content() == "Hello"
```

# --seed--

## --seed-contents--

```html name=index.html
<html>
  <body>
    <h1></h1>
  </body>
</html>
```

# --solutions--

```html name=index.html
<html>
  <body>
    <h1>Hello</h1>
  </body>
</html>
```
"""

SHAPES_PROJECT = """\
---
id: shapes-project
title: Shapes
challengeType: project
---

# --description--

Compute the total area of some rectangles.

# --hints--

`main.total` should add up every area.

```py
main.total([(1, 2), (3, 4)]) == 14
```

# --seed--

## --seed-contents--

```py name=main.py
from shapes import area


def total(rects):
    return sum(area(w, h) for w, h in rects)
```

```py name=shapes.py
def area(width, height):
    return 0
```

# --solutions--

```py name=shapes.py
def area(width, height):
    return width * height
```

```py name=main.py
from shapes import area


def total(rects):
    return sum(area(w, h) for w, h in rects)
```
"""

PYTHON_QUIZ = """\
---
id: python-quiz
title: Python basics quiz
challengeType: quiz
questions:
  - text: Which keyword defines a function?
    answers: [func, def, lambda]
    solution: 2
  - text: Which type is immutable?
    answers: [list, dict, tuple]
    solution: 3
---

# --description--

Answer both questions.
"""

SAMPLE_FILES = {
    "english/python-cert.md": CERTIFICATION,
    "english/python-basics/_superblock.md": SUPERBLOCK,
    "english/python-basics/arithmetic/_block.md": BLOCK,
    "english/python-basics/arithmetic/add-two-numbers.md": ADD_TWO_NUMBERS,
    "english/python-basics/arithmetic/multiply.md": MULTIPLY,
    "english/python-basics/arithmetic/greet-lab.md": GREET_LAB,
    "english/python-basics/arithmetic/heading-markup.md": HEADING_MARKUP,
    "english/python-basics/arithmetic/shapes-project.md": SHAPES_PROJECT,
    "english/python-basics/arithmetic/python-quiz.md": PYTHON_QUIZ,
}


@pytest.fixture
def sample_files() -> dict[str, str]:
    """Relative path to contents of the sample curriculum."""
    return dict(SAMPLE_FILES)


@pytest.fixture
def add_challenge_text() -> str:
    return ADD_TWO_NUMBERS


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Write a content tree under a fresh root and return the root."""

    def write(files: dict[str, str], root: Path = tmp_path / "curriculum") -> Path:
        for relative, text in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return root

    return write


@pytest.fixture
def content_root(write_tree) -> Path:
    """The sample curriculum written to disk."""
    return write_tree(SAMPLE_FILES)


@pytest.fixture
def config() -> KataConfig:
    return KataConfig(default_timeout_ms=5000, max_workers=4, parse_workers=4)


@pytest.fixture
def graph(content_root: Path, config: KataConfig) -> ChallengeGraph:
    """The sample curriculum, built."""
    return CurriculumLoader(config).build(content_root)
