from slamkit.hello import main, print_hello


def test_print_hello_writes_library_greeting(capsys):
    print_hello()
    assert capsys.readouterr().out == "Hello SLAM\n"


def test_main_prints_program_greeting(capsys):
    assert main([]) == 0
    assert capsys.readouterr().out == "Hello SLAM!\n"


def test_main_with_no_arguments_list(capsys):
    assert main(None) == 0
    assert capsys.readouterr().out.startswith("Hello SLAM")