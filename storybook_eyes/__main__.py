import sys

from storybook_eyes.cli import main

sys.exit(main())
