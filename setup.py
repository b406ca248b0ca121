from setuptools import setup, find_packages
from pathlib import Path

package_name = 'gitlab-deploykey-operator'
description = (
    'A Kubernetes Operator that registers GitLab deploy keys for the '
    'SSH identities of Flux synchronization secrets.'
)
author = 'gitlab-deploykey-operator developers'
license = 'Apache-2.0'
pypi_classifiers = [
    'Development Status :: 4 - Beta',
    'License :: OSI Approved :: Apache Software License',
    'Programming Language :: Python :: 3.11',
    'Programming Language :: Python :: 3.12',
]
keywords = ['kubernetes', 'operator', 'flux', 'gitlab']
readme = Path(__file__).parent / 'README.rst'

# Core dependencies
install_requires = [
    'kopf>=1.37',
    'kubernetes>=29.0.0',
    'structlog>=24.1.0',
    'httpx>=0.27',
    'cryptography>=42.0.0',
]

# Test dependencies
tests_require = [
    'pytest>=8.0',
    'pyyaml>=6.0',
]
tests_require += install_requires

# Optional dependencies (like for dev)
extras_require = {
    'test': tests_require,
    # For development environments
    'dev': tests_require,
}

setup(
    name=package_name,
    version='0.1.0',
    description=description,
    long_description=readme.read_text(),
    long_description_content_type='text/x-rst',
    author=author,
    license=license,
    classifiers=pypi_classifiers,
    keywords=keywords,
    python_requires='>=3.11',
    package_dir={'': 'src'},
    packages=find_packages('src', exclude=['docs', 'tests']),
    install_requires=install_requires,
    extras_require=extras_require,
    include_package_data=True,
)
