from setuptools import setup


setup(
    name="budget-import",
    version="0.3.0",
    description="Import repair-shop budgets (quotes) from messy CSV, Excel, JSON and XML files",
    packages=["budget_import"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "rapidfuzz",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "budget-import=budget_import.cli:main",
        ]
    },
)
