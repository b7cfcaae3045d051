import commands

#
# The stuff in this main.py file is just to handle the command line.
# Run it as:
#
#   python main.py S_MIN S_MAX
#

def run():
    commands.coefficients(prog_name='coefficients')


if __name__ == '__main__':
    run()
