from setuptools import setup

setup(
    name='discord_session',
    version='0.0.1',
    description='Sans-I/O session manager for the Discord gateway.',
    packages=['discord_session'],
    python_requires='>=3.8',
    install_requires=['wsproto'],
    extras_require={'perf': ['ujson'], 'test': ['pytest']},
)
