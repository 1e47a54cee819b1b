from setuptools import setup, find_packages

from sdm import __version__
from sdm import __description__
from sdm import __doc__ as __long_description__

setup(
    name = 'sdm',
    version = __version__,
    packages = find_packages(),
    install_requires = [
        'SQLAlchemy>=2.0',
        ],
    extras_require = {
        'test': ['pytest'],
        },
    python_requires = '>=3.8',

    # metadata for upload to PyPI
    description = __description__,
    long_description = __long_description__,
    license = "MIT",
    keywords = "versioning staging publishing sqlalchemy",
    zip_safe = False,
    classifiers = [
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Database',
        'Topic :: Software Development :: Libraries :: Python Modules'],
)
