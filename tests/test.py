"""Unittest runner for netconform."""


import unittest
import sys


if __name__ == "__main__":
    sys.path.insert(0, "../src/")
    testsuite = unittest.TestLoader().discover(".")
    result = unittest.TextTestRunner(verbosity=2).run(testsuite)
    sys.exit(0 if result.wasSuccessful() else 1)
