import enum


class Subject(str, enum.Enum):
    MATHS = "Maths"
    PHYSICS = "Physics"
    COMPUTER_SCIENCE = "Computer Science"
    PYTHON = "Python"


class Level(str, enum.Enum):
    GCSE = "GCSE"
    A_LEVEL = "A-Level"
