import os.path
import re

from setuptools import find_packages, setup


README = os.path.join(os.path.abspath(os.path.dirname(__file__)), "README.rst")


def version():
    with open("debian/changelog") as log:
        first = next(l for l in log if l.strip())
    return re.split("[()]", first)[1].replace("~", "")


setup(name="appmodules",
      version=version(),
      description="Query and control the modules of a hosted application, via the legacy RPC "
                  "channel or the App Engine Admin API.",
      long_description=open(README).read(),
      long_description_content_type="text/x-rst",
      platforms=["Any"],
      python_requires=">=3.9",
      install_requires=["google-auth", "protobuf", "requests"],
      packages=find_packages(exclude=["tests", "tests.*"]))
