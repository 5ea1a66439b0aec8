import setuptools

requirements = [
    "discord.py>=2.4",
    "SQLAlchemy>=2.0",
    "PyYAML",
    "typer",
    "humanize",
]

extras = {
    "migrations": ["alembic"],
    "mysql": ["pymysql"],
    "postgresql": ["psycopg[binary]"],
    "test": ["pytest", "pytest-asyncio"],
}

packages = setuptools.find_namespace_packages(where=".", include=["Warden", "Warden.*"])
if not packages:
    raise ValueError("No packages detected.")

setuptools.setup(
    name="WardenBot",
    version="0.1.0",
    packages=packages,
    py_modules=["cli"],
    package_data={"Warden": ["locales/*.yaml"]},
    install_requires=requirements,
    extras_require=extras,
    entry_points={
        "console_scripts": [
            "wardenbot = cli:bot",
            "alembic-warden = cli:alembic_warden",
        ]
    },
    python_requires=">=3.11",
    license="GNU General Public License v3.0",
    description="Application review and modmail for Discord communities",
    zip_safe=False,
)
